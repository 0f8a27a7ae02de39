"""Turn scanned processes into a verified connection."""

import logging

from agquota.client import mask_token
from agquota.errors import ProbeFailure, ResolutionExhausted, ScanFailure
from agquota.extractor import extract
from agquota.models import ConnectionCandidate, ResolvedConnection
from agquota.prober import PortProber
from agquota.scanner import ProcessScanner

logger = logging.getLogger(__name__)


def rank_candidates(candidates: list[ConnectionCandidate]) -> list[ConnectionCandidate]:
    """Drop non-viable candidates and order the rest by completeness."""
    viable = [c for c in candidates if c.is_viable]
    return sorted(viable, key=lambda c: c.completeness, reverse=True)


def _dedupe(ports: list[int]) -> list[int]:
    return list(dict.fromkeys(ports))


class ConnectionResolver:
    """
    Scanner -> extractor -> prober pipeline.

    detect_process_info() never raises: every internal failure means "try the
    next candidate", and running out of candidates means None.
    """

    def __init__(
        self,
        scanner: ProcessScanner,
        prober: PortProber,
        allow_unauthenticated: bool = True,
    ) -> None:
        self._scanner = scanner
        self._prober = prober
        self._allow_unauthenticated = allow_unauthenticated

    async def detect_process_info(self) -> ResolvedConnection | None:
        try:
            return await self.resolve()
        except ResolutionExhausted as exc:
            logger.info("Language server not found: %s", exc)
            return None
        except Exception:
            logger.exception("Unexpected error while resolving the language server")
            return None

    async def resolve(self) -> ResolvedConnection:
        """
        Find and verify the language server connection.

        Raises:
            ResolutionExhausted: No candidate answered a probe.
        """
        try:
            records = await self._scanner.list_candidate_processes()
        except ScanFailure as exc:
            raise ResolutionExhausted(f"process scan failed: {exc}") from exc

        candidates = rank_candidates([extract(record) for record in records])
        if not candidates:
            raise ResolutionExhausted(f"{len(records)} process(es) matched, none viable")

        for candidate in candidates:
            if not candidate.has_token:
                continue
            connection = await self._probe_candidate(candidate, candidate.csrf_token)
            if connection is not None:
                return connection

        if self._allow_unauthenticated:
            for candidate in candidates:
                if candidate.has_token or not candidate.has_port:
                    continue
                logger.debug("Trying pid %d without authentication", candidate.pid)
                connection = await self._probe_candidate(candidate, None)
                if connection is not None:
                    return connection

        raise ResolutionExhausted(f"no candidate port answered ({len(candidates)} candidate(s))")

    async def _candidate_ports(self, candidate: ConnectionCandidate) -> list[int]:
        ports: list[int] = []
        if candidate.connect_port is not None:
            ports.append(candidate.connect_port)
        try:
            ports.extend(await self._scanner.find_listening_ports(candidate.pid))
        except Exception as exc:
            logger.debug("Listening ports of pid %d unavailable: %s", candidate.pid, exc)
        if candidate.extension_port is not None:
            ports.append(candidate.extension_port)
        return _dedupe(ports)

    async def _probe_candidate(
        self,
        candidate: ConnectionCandidate,
        token: str | None,
    ) -> ResolvedConnection | None:
        ports = await self._candidate_ports(candidate)
        logger.debug(
            "pid %d: probing ports %s with token %s",
            candidate.pid,
            ports,
            mask_token(token),
        )

        for port in ports:
            try:
                probed = await self._prober.probe(port, token)
            except ProbeFailure as exc:
                logger.debug("Probe failed: %s", exc)
                continue

            logger.info(
                "Language server pid %d verified on port %d",
                candidate.pid,
                probed.connect_port,
            )
            return ResolvedConnection(
                connect_port=probed.connect_port,
                csrf_token=probed.csrf_token,
                extension_port=candidate.extension_port,
                pid=candidate.pid,
            )
        return None
