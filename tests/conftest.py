"""Shared fixtures: a sample application and repositories for each backend."""

from __future__ import annotations

from collections import Counter
from contextlib import asynccontextmanager

import pytest

from ledgerflow import WorkerConfig, WorkflowContext, WorkflowRegistry
from ledgerflow.persistence import (
    InMemoryWorkflowRepository,
    SQLWorkflowRepository,
    set_repository,
)

_ENV_VARS = (
    "LEDGERFLOW_CONFIG",
    "LEDGERFLOW_DATABASE_URL",
    "DATABASE_URL",
    "WORKFLOW_POLL_INTERVAL_MS",
    "WORKFLOW_CONCURRENCY",
    "WORKFLOW_LOCK_TIMEOUT_SECS",
    "WORKFLOW_MAX_ATTEMPTS",
    "WORKFLOW_RETRY_BACKOFF_SECS",
)


class SimulatedCrash(BaseException):
    """Stands in for the worker process dying mid-step."""


class SampleApp:
    """Registry of test workflows that counts how often each step body runs."""

    Crash = SimulatedCrash

    def __init__(self, flaky_failures: int = 0, crash_on_email: bool = False) -> None:
        self.calls: Counter[str] = Counter()
        self.flaky_failures = flaky_failures
        self.crash_on_email = crash_on_email
        self.sent: list[str] = []

        r = self.registry = WorkflowRegistry()
        r.register_step("fetch_user", self.fetch_user, input_type=int, output_type=str)
        r.register_step(
            "send_welcome_email", self.send_welcome_email, input_type=str, output_type=None
        )
        r.register_step("flaky", self.flaky, output_type=int)
        r.register_step("always_fails", self.always_fails)
        r.register_step("count_words", self.count_words, input_type=str, output_type=int)
        r.register_workflow("welcome_flow", self.welcome_flow)
        r.register_workflow("flaky_flow", self.flaky_flow)
        r.register_workflow("failing_flow", self.failing_flow)
        r.register_workflow("word_count_flow", self.word_count_flow)

    async def fetch_user(self, user_id: int) -> str:
        self.calls["fetch_user"] += 1
        return f"user:{user_id}"

    async def send_welcome_email(self, user: str) -> None:
        self.calls["send_welcome_email"] += 1
        if self.crash_on_email:
            self.crash_on_email = False
            raise SimulatedCrash()
        self.sent.append(user)

    async def flaky(self) -> int:
        self.calls["flaky"] += 1
        if self.calls["flaky"] <= self.flaky_failures:
            raise RuntimeError(f"flaky failure {self.calls['flaky']}")
        return 2

    async def always_fails(self) -> None:
        self.calls["always_fails"] += 1
        raise RuntimeError("boom")

    def count_words(self, text: str) -> int:
        self.calls["count_words"] += 1
        return len(text.split())

    async def welcome_flow(self, ctx: WorkflowContext, data: dict) -> None:
        user = await ctx.run(self.fetch_user, data["user_id"])
        await ctx.run(self.send_welcome_email, user)

    async def flaky_flow(self, ctx: WorkflowContext, data: dict) -> int:
        return await ctx.run("flaky")

    async def failing_flow(self, ctx: WorkflowContext, data: dict) -> None:
        await ctx.run("always_fails")

    async def word_count_flow(self, ctx: WorkflowContext, text: str) -> dict:
        words = await ctx.run("count_words", text)
        return {"text": text, "words": words}


def fast_config(**overrides) -> WorkerConfig:
    values = dict(
        poll_interval_ms=10,
        concurrency=2,
        lock_timeout_secs=30,
        max_attempts=3,
        retry_backoff_secs=0,
    )
    values.update(overrides)
    return WorkerConfig(**values)


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    """Keep host configuration and the cached repository out of every test."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    set_repository(None)
    yield
    set_repository(None)


@pytest.fixture
def sample_app():
    return SampleApp


@pytest.fixture
def worker_config():
    return fast_config


@pytest.fixture(params=["inmemory", "sqlite"])
def backend(request) -> str:
    return request.param


@pytest.fixture
def open_repository(tmp_path):
    """Factory for fresh, schema-installed repositories of a given backend."""

    @asynccontextmanager
    async def _open(kind: str, filename: str = "wf.db"):
        if kind == "inmemory":
            repo = InMemoryWorkflowRepository()
        elif kind == "sqlite":
            repo = SQLWorkflowRepository(f"sqlite+aiosqlite:///{tmp_path / filename}")
        else:
            raise ValueError(f"Unknown backend: {kind}")
        await repo.install_schema()
        try:
            yield repo
        finally:
            await repo.close()

    return _open
