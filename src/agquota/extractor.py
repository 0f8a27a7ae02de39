"""Pull connection hints out of a language server command line."""

import re
import shlex

from agquota.models import ConnectionCandidate, Platform, ProcessRecord

PORT_NAME = re.compile(r"port", re.IGNORECASE)
TOKEN_NAME = re.compile(r"token|secret|csrf", re.IGNORECASE)
ENV_ASSIGNMENT = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)=(.*)$")


def split_arguments(record: ProcessRecord) -> list[str]:
    """Split a command line the way the owning platform's shell would."""
    posix = record.platform is not Platform.WINDOWS
    try:
        args = shlex.split(record.command_line, posix=posix)
    except ValueError:
        # Unbalanced quotes
        return record.command_line.split()
    if not posix:
        args = [arg.strip('"') for arg in args]
    return args


def iter_flags(args: list[str]):
    """
    Yield ``(name, value)`` for every flag or env-style assignment.

    Handles ``--flag value``, ``--flag=value`` and ``NAME=value``. A flag
    followed by another flag yields an empty value.
    """
    for index, arg in enumerate(args):
        if arg.startswith("-"):
            name, sep, value = arg.lstrip("-").partition("=")
            if not sep:
                following = args[index + 1] if index + 1 < len(args) else ""
                value = "" if following.startswith("-") else following
            yield name, value
            continue

        match = ENV_ASSIGNMENT.match(arg)
        if match:
            yield match.group(1), match.group(2)


def _parse_port(value: str) -> int | None:
    if not value.isdigit():
        return None
    port = int(value)
    return port if 0 < port < 65536 else None


def extract(record: ProcessRecord) -> ConnectionCandidate:
    """
    Build a ConnectionCandidate from a process record.

    Flag names are matched loosely (anything containing "port", or
    "token"/"secret"/"csrf") and the first match of each kind wins. Missing
    values are left as None.
    """
    extension_port: int | None = None
    connect_port: int | None = None
    csrf_token: str | None = None
    # Token meant for the extension's own server; used only if nothing else matches
    extension_token: str | None = None

    for name, value in iter_flags(split_arguments(record)):
        is_extension = "extension" in name.lower()
        if PORT_NAME.search(name):
            port = _parse_port(value)
            if port is None:
                continue
            if is_extension:
                if extension_port is None:
                    extension_port = port
            elif connect_port is None:
                connect_port = port
        elif TOKEN_NAME.search(name) and value:
            if is_extension:
                if extension_token is None:
                    extension_token = value
            elif csrf_token is None:
                csrf_token = value

    return ConnectionCandidate(
        pid=record.pid,
        extension_port=extension_port,
        connect_port=connect_port,
        csrf_token=csrf_token or extension_token,
    )
