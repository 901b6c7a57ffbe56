"""Shared fixtures for TestMind tests."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from testmind.llm.base import LLMRequest, LLMResponse
from testmind.locator.dom import HTMLSnapshotAdapter
from testmind.models import TestFailure, TestRunRecord

FIXTURES = Path(__file__).parent / "fixtures"

LOGIN_TEST = '''import pytest
from playwright.sync_api import Page


def test_login(page: Page):
    page.goto("/login")
    page.fill("#email", "user@example.com")
    page.click("#old-submit-btn")
    assert page.inner_text(".welcome") == "Welcome"
'''


class FakeLLM:
    """Returns canned responses in order, or raises when given an exception."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests: list[LLMRequest] = []

    async def generate(self, request: LLMRequest) -> LLMResponse:
        self.requests.append(request)
        if not self.responses:
            raise RuntimeError("no canned response left")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return LLMResponse(content=response, usage={"total_tokens": 42})


class FakeTrace:
    def __init__(self, name, metadata):
        self.id = f"trace-{name}"
        self.name = name
        self.metadata = metadata
        self.status = None

    def update(self, metadata=None, status=None):
        if metadata is not None:
            self.metadata = metadata
        if status is not None:
            self.status = status


class FakeLangfuse:
    """Records calls in place of the real Langfuse client."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.calls = []

    def trace(self, name, metadata):
        trace = FakeTrace(name, metadata)
        self.calls.append(("trace", name))
        return trace

    def generation(self, **kwargs):
        self.calls.append(("generation", kwargs))

    def span(self, **kwargs):
        self.calls.append(("span", kwargs))

    def score(self, **kwargs):
        self.calls.append(("score", kwargs))

    def flush(self):
        self.calls.append(("flush", None))


@pytest.fixture
def login_html() -> str:
    return (FIXTURES / "login.html").read_text(encoding="utf-8")


@pytest.fixture
def snapshot(login_html) -> HTMLSnapshotAdapter:
    return HTMLSnapshotAdapter(login_html)


@pytest.fixture
def browser(snapshot):
    return snapshot.context("https://example.test/login")


@pytest.fixture
def make_failure():
    """Factory for TestFailure with sensible defaults."""

    def factory(error_message: str = "Element not found: #old-submit-btn", **kwargs) -> TestFailure:
        kwargs.setdefault("test_name", "test_login")
        kwargs.setdefault("test_file", "tests/e2e/test_login.py")
        return TestFailure(error_message=error_message, **kwargs)

    return factory


def make_runs(pattern: str, start: datetime | None = None, durations: list[float] | None = None):
    """Build run history from a string such as ``"PFPF"`` (P=pass, F=fail)."""
    start = start or datetime(2024, 3, 1, 12, 0)
    return [
        TestRunRecord(
            timestamp=start + timedelta(hours=k),
            passed=char == "P",
            duration_ms=durations[k] if durations else 1000.0,
        )
        for k, char in enumerate(pattern)
    ]
