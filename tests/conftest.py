import asyncio

import pytest

from urlrisk_agent.config import SOURCE_IDS, build


class FakeSource:
    """In-memory signal source. ``script`` is consumed one item per call:
    a dict is returned, an exception instance is raised, and a float is
    slept (in seconds) before returning ``payload``."""

    def __init__(self, source_id, payload=None, script=None, delay=0.0):
        self.source_id = source_id
        self.payload = payload if payload is not None else {"risk": 0.0, "summary": f"{source_id} ok"}
        self.script = list(script or [])
        self.delay = delay
        self.calls = []

    async def lookup(self, domain):
        self.calls.append(domain)
        step = self.script.pop(0) if self.script else None
        if isinstance(step, BaseException):
            raise step
        if isinstance(step, dict):
            return step
        delay = step if isinstance(step, (int, float)) else self.delay
        if delay:
            await asyncio.sleep(delay)
        return self.payload


@pytest.fixture
def fast_config():
    # Short timeouts and no backoff so orchestration tests finish quickly.
    return build(
        "development",
        {
            "total_deadline_s": 1.0,
            "retry_backoff_s": 0,
            "sources": {sid: {"timeout_s": 0.2} for sid in SOURCE_IDS},
        },
    )


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def all_ok_sources():
    return [
        FakeSource("reputation", {"risk": 0.0, "summary": "No known threats listed"}),
        FakeSource("whois", {"risk": 0.0, "summary": "Domain registered 9000 days ago"}),
        FakeSource("ssl", {"risk": 0.0, "summary": "Valid certificate"}),
        FakeSource("ai", {"risk": 0.1, "summary": "Established domain"}),
    ]
