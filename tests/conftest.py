import asyncio

import pytest_asyncio

from app.audit.executor import AuditExecutor
from app.jobs.in_process_queue import AuditQueue


class RecordingExecutor(AuditExecutor):
    """Fake audit that sleeps, optionally fails, and records what it saw."""

    def __init__(self, delay: float = 0.0, failures: int = 0, always_fail: bool = False):
        self.delay = delay
        self.failures = failures
        self.always_fail = always_fail
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def execute(self, url, options):
        self.calls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delay)
            if self.always_fail or self.failures > 0:
                self.failures -= 1
                raise RuntimeError(f"audit failed for {url}")
            return {"url": url, "options": options, "score": 100}
        finally:
            self.active -= 1


@pytest_asyncio.fixture
async def make_queue():
    queues = []

    def factory(executor=None, **kwargs):
        kwargs.setdefault("poll_interval", 0.01)
        kwargs.setdefault("shutdown_timeout", 0.5)
        queue = AuditQueue(executor or RecordingExecutor(), **kwargs)
        queues.append(queue)
        return queue

    yield factory

    for queue in queues:
        await queue.force_shutdown()
