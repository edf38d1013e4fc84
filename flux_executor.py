"""
Load Test Executor
==================
Concurrent execution engine.

- ChainRunner: one pass through the scenario chain with dependency gating,
  variable extraction and substitution
- Worker: repeats a simple request or a chain pass until its duration elapses
- WorkerPool: launches the workers (all at once or staggered) and joins them

Workers share nothing but the MetricsCollector. Each owns its HttpClient and
every chain pass gets a fresh variable store.

The deadline is checked between iterations only, so a slow request or a long
chain can finish after the nominal duration (overshoot).
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List, Callable, Awaitable, Set

from flux_client import HttpClient, HttpResponse
from flux_config import RunConfig, Scenario, ExecutionMode
from flux_errors import RequestError
from flux_metrics import MetricsCollector, RequestOutcome
from flux_templating import VariableStore, substitute, apply_extractions

logger = logging.getLogger(__name__)

# Sync mode: delay between worker launches and pause between iterations
SYNC_LAUNCH_DELAY_SECS = 0.01
SYNC_ITERATION_PAUSE_SECS = 0.01

_SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.\-]*://")

OutcomeSink = Callable[[RequestOutcome], None]


def resolve_url(base_url: Optional[str], url: str) -> str:
    """Absolute URLs pass through; anything else is appended to the base target."""
    if _SCHEME_RE.match(url):
        return url
    if base_url:
        return base_url.strip().rstrip("/") + url
    return url


async def timed_request(
    scenario_name: Optional[str],
    send: Callable[[], Awaitable[HttpResponse]],
):
    """
    Await ``send`` and wrap the result in a RequestOutcome.
    RequestErrors become a status 0 outcome carrying the error message.
    Returns (outcome, response or None).
    """
    start_time = datetime.now(timezone.utc)
    started = time.perf_counter()
    response = None
    error = None

    try:
        response = await send()
    except RequestError as e:
        error = str(e) or type(e).__name__

    latency_ms = int((time.perf_counter() - started) * 1000)
    outcome = RequestOutcome(
        scenario_name=scenario_name,
        latency_ms=latency_ms,
        status_code=response.status if response is not None else 0,
        error=error,
        request_start_timestamp=start_time,
        request_end_timestamp=datetime.now(timezone.utc),
    )
    return outcome, response


# =============================================================================
# SCENARIO CHAIN
# =============================================================================

@dataclass
class StepResult:
    """What happened to one step during a chain pass."""
    name: str
    executed: bool
    elapsed_ms: float
    outcome: Optional[RequestOutcome] = None

    @property
    def skipped(self) -> bool:
        return not self.executed


class ChainRunner:
    """Runs the scenario list once per call to run_pass(), in declaration order."""

    def __init__(self, scenarios: List[Scenario], client, base_url: Optional[str] = None):
        self.scenarios = scenarios
        self.client = client
        self.base_url = base_url

    async def run_pass(self, on_outcome: Optional[OutcomeSink] = None) -> List[StepResult]:
        """
        Execute every step once, threading one variable store through the pass.

        A step whose dependency has not executed earlier in this pass is skipped
        and produces no outcome. Executed steps produce exactly one outcome,
        handed to ``on_outcome`` as soon as it exists.
        """
        variables: VariableStore = {}
        executed: Set[str] = set()
        steps: List[StepResult] = []

        for scenario in self.scenarios:
            step_started = time.perf_counter()

            if scenario.depends_on and scenario.depends_on not in executed:
                logger.warning(
                    "Skipping scenario '%s' - dependency '%s' not met",
                    scenario.name, scenario.depends_on,
                )
                steps.append(StepResult(
                    name=scenario.name,
                    executed=False,
                    elapsed_ms=(time.perf_counter() - step_started) * 1000,
                ))
                continue

            outcome, response = await timed_request(
                scenario.name,
                lambda s=scenario: self._send(s, variables),
            )
            executed.add(scenario.name)

            if outcome.error:
                logger.debug("Scenario '%s' failed: %s", scenario.name, outcome.error)
            elif scenario.extract and response is not None:
                apply_extractions(response.text(), scenario.extract, variables)

            if on_outcome is not None:
                on_outcome(outcome)

            steps.append(StepResult(
                name=scenario.name,
                executed=True,
                elapsed_ms=(time.perf_counter() - step_started) * 1000,
                outcome=outcome,
            ))

        return steps

    def _send(self, scenario: Scenario, variables: VariableStore) -> Awaitable[HttpResponse]:
        headers = {key: substitute(value, variables) for key, value in scenario.headers.items()}
        body = substitute(scenario.body, variables) if scenario.body is not None else None
        return self.client.execute(
            scenario.method,
            resolve_url(self.base_url, scenario.url),
            headers=headers,
            body=body,
            multipart=scenario.multipart,
        )


# =============================================================================
# WORKER
# =============================================================================

class Worker:
    """One independent request loop."""

    def __init__(
        self,
        worker_id: int,
        config: RunConfig,
        metrics: MetricsCollector,
        duration_secs: float,
        client_factory: Callable[[], object] = HttpClient,
    ):
        self.worker_id = worker_id
        self.config = config
        self.metrics = metrics
        self.duration_secs = duration_secs
        self.client_factory = client_factory
        self.iterations = 0

    async def run(self) -> int:
        """Loop until the duration has elapsed since this worker started. Returns iterations done."""
        logger.debug("Worker %d started", self.worker_id)
        client = self.client_factory()
        runner = ChainRunner(self.config.scenarios, client, self.config.target)
        sync = self.config.mode == ExecutionMode.SYNC
        started = time.monotonic()

        try:
            while time.monotonic() - started < self.duration_secs:
                if self.config.is_simple_mode:
                    await self._execute_simple(client)
                else:
                    await runner.run_pass(on_outcome=self.metrics.record)
                self.iterations += 1

                if sync:
                    await asyncio.sleep(SYNC_ITERATION_PAUSE_SECS)
                else:
                    # Yield even if the request completed without suspending
                    await asyncio.sleep(0)
        finally:
            await client.close()

        logger.debug("Worker %d finished after %d iterations", self.worker_id, self.iterations)
        return self.iterations

    async def _execute_simple(self, client):
        cfg = self.config
        outcome, _ = await timed_request(
            None,
            lambda: client.execute(
                cfg.method,
                cfg.target,
                headers=cfg.headers,
                body=cfg.body,
                multipart=cfg.multipart,
            ),
        )
        if outcome.error:
            logger.debug("Request failed: %s", outcome.error)
        self.metrics.record(outcome)


# =============================================================================
# WORKER POOL
# =============================================================================

class WorkerPool:
    """
    Launches exactly ``config.concurrency`` workers.

    async: all workers start back to back; run() returns once every worker
    has finished its loop.

    sync: workers start SYNC_LAUNCH_DELAY_SECS apart and each runs for the full
    duration from its own start, but run() returns once the duration has
    elapsed since launching began. Workers still busy at that point are left
    running until close().
    """

    def __init__(
        self,
        config: RunConfig,
        metrics: MetricsCollector,
        duration_secs: float,
        client_factory: Callable[[], object] = HttpClient,
    ):
        self.config = config
        self.metrics = metrics
        self.duration_secs = duration_secs
        self.client_factory = client_factory
        self.workers: List[Worker] = []
        self._tasks: List[asyncio.Task] = []

    def _launch(self, worker_id: int):
        worker = Worker(worker_id, self.config, self.metrics, self.duration_secs, self.client_factory)
        self.workers.append(worker)
        self._tasks.append(asyncio.create_task(worker.run(), name=f"flux-worker-{worker_id}"))

    async def run(self):
        started = time.monotonic()
        logger.info(
            "Launching %d workers (%s mode) for %ss",
            self.config.concurrency, self.config.mode.value, self.duration_secs,
        )

        if self.config.mode == ExecutionMode.ASYNC:
            for worker_id in range(self.config.concurrency):
                self._launch(worker_id)
            await asyncio.gather(*self._tasks)
        else:
            for worker_id in range(self.config.concurrency):
                self._launch(worker_id)
                await asyncio.sleep(SYNC_LAUNCH_DELAY_SECS)

            remaining = self.duration_secs - (time.monotonic() - started)
            if remaining > 0:
                await asyncio.sleep(remaining)

        logger.info("Worker pool finished after %.2fs", time.monotonic() - started)

    async def close(self):
        """Cancel workers still running and wait for them to release their clients."""
        running = [task for task in self._tasks if not task.done()]
        if running:
            logger.info("Cancelling %d workers still running", len(running))
        for task in running:
            task.cancel()

        results = await asyncio.gather(*self._tasks, return_exceptions=True)
        for worker, result in zip(self.workers, results):
            if isinstance(result, Exception):
                logger.error("Worker %d crashed: %r", worker.worker_id, result)
