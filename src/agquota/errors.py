"""Exception types for agquota."""


class AgquotaError(Exception):
    """Base class for all agquota errors."""


class ScanFailure(AgquotaError):
    """The process table could not be read at all."""


class ProbeFailure(AgquotaError):
    """A candidate port is unreachable or serves something else."""

    def __init__(self, port: int, reason: str) -> None:
        super().__init__(f"port {port}: {reason}")
        self.port = port
        self.reason = reason


class ResolutionExhausted(AgquotaError):
    """No candidate produced a working connection."""


class FetchFailure(AgquotaError):
    """A quota request failed or returned an unusable payload."""
