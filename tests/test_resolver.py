"""Tests for ConnectionResolver."""

import pytest

from agquota.errors import ProbeFailure, ScanFailure
from agquota.models import ConnectionCandidate, ResolvedConnection
from agquota.prober import PortProber
from agquota.resolver import ConnectionResolver, rank_candidates


class ScriptedProber:
    """Prober that accepts a fixed set of (port, token) pairs."""

    def __init__(self, accepted=None, redirects=None, error=None):
        self.accepted = set(accepted or [])
        self.redirects = redirects or {}
        self.error = error
        self.calls = []

    async def probe(self, port, token=None):
        self.calls.append((port, token))
        if self.error is not None:
            raise self.error
        if (port, token) not in self.accepted:
            raise ProbeFailure(port, "HTTP 401")
        return ResolvedConnection(connect_port=self.redirects.get(port, port), csrf_token=token)


def test_rank_candidates_orders_by_completeness():
    port_only = ConnectionCandidate(pid=1, connect_port=5001)
    token_only = ConnectionCandidate(pid=2, csrf_token="t")
    complete = ConnectionCandidate(pid=3, extension_port=5000, csrf_token="t")
    empty = ConnectionCandidate(pid=4)

    ranked = rank_candidates([port_only, empty, token_only, complete])

    assert ranked == [complete, token_only, port_only]


@pytest.mark.asyncio
async def test_resolves_complete_candidate(fake_scanner_cls, make_record):
    scanner = fake_scanner_cls(
        records=[make_record(10, "language_server --extension_server_port 5000 --csrf_token abc")],
        ports={10: [5001]},
    )
    prober = ScriptedProber(accepted=[(5001, "abc")])

    connection = await ConnectionResolver(scanner, prober).detect_process_info()

    assert connection == ResolvedConnection(
        connect_port=5001, csrf_token="abc", extension_port=5000, pid=10
    )
    # Listening ports come before the extension port
    assert prober.calls == [(5001, "abc")]


@pytest.mark.asyncio
async def test_connect_port_may_differ_from_probed_port(fake_scanner_cls, make_record):
    scanner = fake_scanner_cls(
        records=[make_record(10, "language_server --extension_server_port 5000 --csrf_token abc")]
    )
    prober = ScriptedProber(accepted=[(5000, "abc")], redirects={5000: 5005})

    connection = await ConnectionResolver(scanner, prober).detect_process_info()

    assert connection.connect_port == 5005
    assert connection.extension_port == 5000


@pytest.mark.asyncio
async def test_non_viable_candidates_are_never_probed(fake_scanner_cls, make_record):
    scanner = fake_scanner_cls(records=[make_record(10, "language_server --verbose")])
    prober = ScriptedProber()

    assert await ConnectionResolver(scanner, prober).detect_process_info() is None
    assert prober.calls == []


@pytest.mark.asyncio
async def test_more_complete_candidate_is_tried_first(fake_scanner_cls, make_record):
    scanner = fake_scanner_cls(
        records=[
            make_record(1, "language_server --csrf_token lonely"),
            make_record(2, "language_server --extension_server_port 6000 --csrf_token full"),
        ],
        ports={1: [7000]},
    )
    prober = ScriptedProber(accepted=[(7000, "lonely"), (6000, "full")])

    connection = await ConnectionResolver(scanner, prober).detect_process_info()

    assert connection.pid == 2
    assert prober.calls[0] == (6000, "full")


@pytest.mark.asyncio
async def test_falls_through_to_next_candidate(fake_scanner_cls, make_record):
    scanner = fake_scanner_cls(
        records=[
            make_record(1, "language_server --extension_server_port 6000 --csrf_token stale"),
            make_record(2, "language_server --extension_server_port 6100 --csrf_token fresh"),
        ]
    )
    prober = ScriptedProber(accepted=[(6100, "fresh")])

    connection = await ConnectionResolver(scanner, prober).detect_process_info()

    assert connection.pid == 2
    assert prober.calls == [(6000, "stale"), (6100, "fresh")]


@pytest.mark.asyncio
async def test_scan_failure_resolves_to_none(fake_scanner_cls):
    scanner = fake_scanner_cls(error=ScanFailure("no /proc"))

    assert await ConnectionResolver(scanner, ScriptedProber()).detect_process_info() is None


@pytest.mark.asyncio
async def test_no_processes_resolves_to_none(fake_scanner_cls):
    assert await ConnectionResolver(fake_scanner_cls(), ScriptedProber()).detect_process_info() is None


@pytest.mark.asyncio
async def test_unauthenticated_fallback_for_port_only(fake_scanner_cls, make_record):
    scanner = fake_scanner_cls(records=[make_record(10, "language_server --server_port 5100")])
    prober = ScriptedProber(accepted=[(5100, None)])

    connection = await ConnectionResolver(scanner, prober).detect_process_info()

    assert connection.connect_port == 5100
    assert connection.csrf_token is None


@pytest.mark.asyncio
async def test_unauthenticated_fallback_can_be_disabled(fake_scanner_cls, make_record):
    scanner = fake_scanner_cls(records=[make_record(10, "language_server --server_port 5100")])
    prober = ScriptedProber(accepted=[(5100, None)])

    resolver = ConnectionResolver(scanner, prober, allow_unauthenticated=False)

    assert await resolver.detect_process_info() is None
    assert prober.calls == []


@pytest.mark.asyncio
async def test_unexpected_error_resolves_to_none(fake_scanner_cls, make_record):
    scanner = fake_scanner_cls(records=[make_record(10, "language_server --csrf_token abc --server_port 1")])
    prober = ScriptedProber(error=RuntimeError("boom"))

    assert await ConnectionResolver(scanner, prober).detect_process_info() is None


@pytest.mark.asyncio
async def test_end_to_end_against_fake_server(fake_scanner_cls, make_record, language_server, token):
    """Test resolution against a real HTTP listener."""
    scanner = fake_scanner_cls(
        records=[
            make_record(
                10,
                f"language_server --extension_server_port 1 --csrf_token {token}",
            )
        ],
        ports={10: [language_server.port]},
    )

    connection = await ConnectionResolver(scanner, PortProber(timeout=2.0)).detect_process_info()

    assert connection.connect_port == language_server.port
    assert connection.csrf_token == token


@pytest.mark.asyncio
async def test_binary_service_on_a_port_is_skipped(
    fake_scanner_cls, make_record, binary_server, language_server, token
):
    """Test a port serving non-UTF-8 bytes does not stop the search."""
    scanner = fake_scanner_cls(
        records=[make_record(10, f"language_server --csrf_token {token}")],
        ports={10: [binary_server.port, language_server.port]},
    )

    connection = await ConnectionResolver(scanner, PortProber(timeout=2.0)).detect_process_info()

    assert connection is not None
    assert connection.connect_port == language_server.port
