"""Language server process discovery for agquota."""

import asyncio
import logging
import platform
from abc import ABC, abstractmethod

import psutil

from agquota.errors import ScanFailure
from agquota.models import Platform, ProcessRecord

logger = logging.getLogger(__name__)

# Arguments the language server is always launched with
LAUNCH_MARKERS = ("--extension_server_port", "--csrf_token")
APP_MARKER = "antigravity"


class ProcessScanner(ABC):
    """
    Finds language server processes in the local process table.

    Uses psutil.process_iter() so the same code path works on every OS;
    subclasses only decide which names count as a match. Enumeration runs
    in a worker thread to keep the event loop free.
    """

    platform: Platform
    process_names: tuple[str, ...]

    async def list_candidate_processes(self) -> list[ProcessRecord]:
        """
        Return every process that looks like the language server.

        An empty list means nothing matched. Raises ScanFailure only when
        the process table itself cannot be read.
        """
        return await asyncio.to_thread(self._scan_processes)

    async def find_listening_ports(self, pid: int) -> list[int]:
        """Return the sorted TCP ports ``pid`` is listening on."""
        return await asyncio.to_thread(self._listening_ports, pid)

    @abstractmethod
    def matches(self, name: str, command_line: str) -> bool:
        """Decide whether a process name and command line belong to the target."""

    def _scan_processes(self) -> list[ProcessRecord]:
        records: list[ProcessRecord] = []

        try:
            iterator = psutil.process_iter(attrs=["pid", "name", "cmdline"])
            for proc in iterator:
                try:
                    info = proc.info
                    cmdline = info.get("cmdline") or []
                    name = info.get("name") or ""
                    command_line = self._join_cmdline(cmdline) if cmdline else name

                    if not self.matches(name, command_line):
                        continue

                    records.append(
                        ProcessRecord(
                            pid=info.get("pid", 0),
                            command_line=command_line,
                            platform=self.platform,
                        )
                    )
                except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                    # Process died mid-scan or belongs to another user
                    continue
        except (psutil.Error, OSError) as exc:
            raise ScanFailure(f"cannot list processes: {exc}") from exc

        logger.debug("Process scan matched %d candidate(s)", len(records))
        return records

    def _listening_ports(self, pid: int) -> list[int]:
        ports: set[int] = set()
        try:
            for conn in psutil.Process(pid).net_connections(kind="inet"):
                if conn.status == psutil.CONN_LISTEN and conn.laddr:
                    ports.add(conn.laddr.port)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess) as exc:
            logger.debug("Cannot read listening ports of pid %s: %s", pid, exc)
            return []
        return sorted(ports)

    def _join_cmdline(self, cmdline: list[str]) -> str:
        return " ".join(cmdline)

    def _has_marker(self, command_line: str) -> bool:
        lowered = command_line.lower()
        return any(marker in lowered for marker in LAUNCH_MARKERS) or APP_MARKER in lowered


class UnixProcessScanner(ProcessScanner):
    """Scanner for Linux and macOS."""

    platform = Platform.UNIX

    def __init__(self, system: str = "Linux") -> None:
        if system == "Darwin":
            self.process_names = ("language_server_macos", "language_server")
        else:
            self.process_names = ("language_server_linux", "language_server")

    def matches(self, name: str, command_line: str) -> bool:
        haystack = f"{name} {command_line}"
        if not any(target in haystack for target in self.process_names):
            return False
        return self._has_marker(command_line)


class WindowsProcessScanner(ProcessScanner):
    """Scanner for Windows, where names carry an .exe suffix and vary in case."""

    platform = Platform.WINDOWS
    process_names = ("language_server_windows", "language_server")

    def matches(self, name: str, command_line: str) -> bool:
        haystack = f"{name} {command_line}".lower()
        if not any(target in haystack for target in self.process_names):
            return False
        return self._has_marker(command_line)

    def _join_cmdline(self, cmdline: list[str]) -> str:
        # Re-quote arguments containing spaces, as Windows paths often do
        return " ".join(f'"{arg}"' if " " in arg else arg for arg in cmdline)


def select_scanner(system: str | None = None) -> ProcessScanner:
    """Pick the scanner for the host OS."""
    system = system or platform.system()
    if system == "Windows":
        return WindowsProcessScanner()
    if system in ("Linux", "Darwin") or system.endswith("BSD"):
        return UnixProcessScanner(system)
    raise ScanFailure(f"unsupported platform: {system}")
