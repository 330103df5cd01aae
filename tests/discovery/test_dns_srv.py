"""Tests for the DNS SRV probe."""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import List, Optional

import dns.exception
import dns.resolver
import pytest

from mailbridge.discovery.dns_srv import resolve_srv_record, select_best_record, srv_query_name
from mailbridge.discovery.models import SrvRecord


def _rdata(target: str, port: int = 443, priority: int = 10, weight: int = 0) -> SimpleNamespace:
    return SimpleNamespace(target=target, port=port, priority=priority, weight=weight)


class _FakeResolver:
    def __init__(
        self,
        answer: Optional[List[SimpleNamespace]] = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        self.answer = answer or []
        self.error = error
        self.delay = delay
        self.queries: List[tuple] = []

    async def resolve(self, qname: str, rdtype: str, lifetime: Optional[float] = None):
        self.queries.append((qname, rdtype, lifetime))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.answer


def test_query_name() -> None:
    assert srv_query_name("example.com") == "_jmap._tcp.example.com"


def test_best_record_prefers_low_priority_then_high_weight() -> None:
    records = [
        SrvRecord(hostname="a.example.com", port=443, priority=20, weight=10),
        SrvRecord(hostname="b.example.com", port=443, priority=10, weight=5),
        SrvRecord(hostname="c.example.com", port=443, priority=10, weight=10),
    ]

    assert select_best_record(records).hostname == "c.example.com"
    assert select_best_record(list(reversed(records))).hostname == "c.example.com"
    assert select_best_record([]) is None


@pytest.mark.asyncio
async def test_resolve_returns_single_best_record() -> None:
    resolver = _FakeResolver(
        [
            _rdata("a.example.com.", priority=20, weight=10),
            _rdata("b.example.com.", priority=10, weight=5),
            _rdata("jmap.example.com.", port=8443, priority=10, weight=10),
        ]
    )

    record = await resolve_srv_record("example.com", 2.0, resolver=resolver)

    assert record == SrvRecord(hostname="jmap.example.com", port=8443, priority=10, weight=10)
    assert resolver.queries == [("_jmap._tcp.example.com", "SRV", 2.0)]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        dns.resolver.NXDOMAIN(),
        dns.resolver.NoAnswer(),
        dns.exception.Timeout(),
        dns.resolver.NoNameservers(),
        OSError("network unreachable"),
        ValueError("bad name"),
    ],
)
async def test_resolver_failures_mean_not_found(error: BaseException) -> None:
    assert await resolve_srv_record("example.com", resolver=_FakeResolver(error=error)) is None


@pytest.mark.asyncio
async def test_slow_resolver_is_cut_off_by_timeout() -> None:
    resolver = _FakeResolver([_rdata("jmap.example.com.")], delay=1.0)

    assert await resolve_srv_record("example.com", 0.05, resolver=resolver) is None


@pytest.mark.asyncio
async def test_root_target_means_service_not_offered() -> None:
    resolver = _FakeResolver([_rdata(".")])

    assert await resolve_srv_record("example.com", resolver=resolver) is None
