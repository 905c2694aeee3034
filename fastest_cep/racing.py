"""
Race coordinator: fan a lookup out to every provider and keep the first success.

A race shares one deadline, one result queue and one race-over event between
all provider tasks. The coordinator is the only reader of the queue. Once the
outcome is decided the event is set, unfinished providers are cancelled and a
detached drain task waits for them so the response is never held up.
"""

import asyncio
import uuid
from typing import List, Optional, Sequence, Set

import httpx
from loguru import logger

from fastest_cep.errors import ProviderError
from fastest_cep.models import ProviderResult, RaceOutcome, RaceStatus
from fastest_cep.providers import CepProvider


class RaceCoordinator:
    """Races a fixed set of providers against a shared deadline."""

    def __init__(self, providers: Sequence[CepProvider], race_timeout: float = 1.0):
        if race_timeout <= 0:
            raise ValueError(f"race_timeout must be positive, got {race_timeout}")
        self.providers: List[CepProvider] = list(providers)
        self.race_timeout = race_timeout
        self._drains: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        """Number of drain tasks still waiting on cancelled providers."""
        return len(self._drains)

    async def race(
            self,
            client: httpx.AsyncClient,
            cep: str,
            request_id: Optional[str] = None
    ) -> RaceOutcome:
        """
        Run every provider concurrently and resolve to exactly one outcome.

        The first successful result wins. Failures are collected and only
        decide the race once every provider has failed. If the deadline
        passes first the race times out.
        """
        request_id = request_id or f"cep-{uuid.uuid4()}"
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        deadline = start_time + self.race_timeout

        if not self.providers:
            logger.error(f"[{request_id}] No providers configured, nothing to race")
            return RaceOutcome.all_failed([])

        results: asyncio.Queue = asyncio.Queue()
        race_over = asyncio.Event()

        logger.info(
            f"[{request_id}] Racing {len(self.providers)} providers for CEP {cep}: "
            f"{[p.name for p in self.providers]}"
        )
        tasks = [
            asyncio.create_task(
                self._run_provider(provider, client, cep, deadline, results, race_over, request_id),
                name=f"{request_id}-{provider.name}",
            )
            for provider in self.providers
        ]

        try:
            outcome = await self._decide(results, len(tasks), deadline, start_time)
        finally:
            race_over.set()
            self._release(tasks, request_id)

        if outcome.status is RaceStatus.SUCCEEDED:
            logger.info(
                f"[{request_id}] Racing winner: {outcome.winner.source} "
                f"in {outcome.elapsed:.2f}s (provider call took {outcome.winner.elapsed:.2f}s)"
            )
        elif outcome.status is RaceStatus.ALL_FAILED:
            logger.error(
                f"[{request_id}] All providers failed: "
                + "; ".join(f"{f.describe_failure()} after {f.elapsed:.2f}s" for f in outcome.failures)
            )
        else:
            logger.warning(
                f"[{request_id}] Race timed out after {self.race_timeout:.2f}s "
                f"({len(outcome.failures)} failure(s) seen)"
            )
        return outcome

    async def _decide(
            self,
            results: asyncio.Queue,
            num_racers: int,
            deadline: float,
            start_time: float
    ) -> RaceOutcome:
        loop = asyncio.get_running_loop()
        failures: List[ProviderResult] = []

        while len(failures) < num_racers:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return RaceOutcome.timed_out(failures, elapsed=loop.time() - start_time)
            try:
                result: ProviderResult = await asyncio.wait_for(results.get(), timeout=remaining)
            except asyncio.TimeoutError:
                return RaceOutcome.timed_out(failures, elapsed=loop.time() - start_time)

            if result.ok:
                return RaceOutcome.succeeded(result, failures, elapsed=loop.time() - start_time)
            failures.append(result)

        return RaceOutcome.all_failed(failures, elapsed=loop.time() - start_time)

    async def _run_provider(
            self,
            provider: CepProvider,
            client: httpx.AsyncClient,
            cep: str,
            deadline: float,
            results: asyncio.Queue,
            race_over: asyncio.Event,
            request_id: str
    ) -> None:
        """Fetch from one provider and hand the result over unless the race is done."""
        remaining = max(deadline - asyncio.get_running_loop().time(), 0.001)
        try:
            result = await provider.fetch(client, cep, timeout=remaining)
        except Exception as e:
            logger.exception(f"[{request_id}] Provider {provider.name} EXCEPTION in race: {e}")
            result = ProviderResult(
                source=provider.name,
                error=ProviderError(provider.name, f"{type(e).__name__}: {e}"),
            )

        if race_over.is_set():
            logger.debug(f"[{request_id}] Discarding late result from {provider.name}")
            return
        # Unbounded queue: the handoff never blocks
        results.put_nowait(result)

    def _release(self, tasks: List[asyncio.Task], request_id: str) -> None:
        pending = [task for task in tasks if not task.done()]
        if not pending:
            return

        logger.info(f"[{request_id}] Cancelling {len(pending)} remaining provider tasks")
        for task in pending:
            task.cancel()

        drain = asyncio.create_task(self._drain(pending, request_id), name=f"{request_id}-drain")
        self._drains.add(drain)
        drain.add_done_callback(self._drains.discard)

    @staticmethod
    async def _drain(tasks: List[asyncio.Task], request_id: str) -> None:
        outcomes = await asyncio.gather(*tasks, return_exceptions=True)
        for task, outcome in zip(tasks, outcomes):
            if isinstance(outcome, Exception):
                logger.error(f"[{request_id}] Task {task.get_name()} ended with {outcome!r}")
        logger.debug(f"[{request_id}] Drained {len(tasks)} provider tasks")

    async def aclose(self) -> None:
        """Wait for every outstanding drain task."""
        if self._drains:
            logger.info(f"Waiting for {len(self._drains)} drain tasks to finish")
            await asyncio.gather(*list(self._drains), return_exceptions=True)
