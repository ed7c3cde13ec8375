"""Batched, rate-limited driver of the per-item extraction chain.

For every batch, in order:

1. note the start time;
2. fan the batch out to invoke -> transform -> persist with at most
   ``max_parallelism`` items in flight;
3. wait for every item to settle (a failing item never cancels its
   siblings);
4. record each outcome into the RunResult;
5. unless it was the last batch, sleep out the rest of the rate-limit
   window.

Item tasks report their outcome through a queue that only the controller
drains, so the RunResult has a single writer.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from pydantic import BaseModel

from receipt_ocr.core.exceptions import (
    BaseError,
    InvalidConfiguration,
    ItemTimeoutError,
    PersistenceError,
    TransientInferenceError,
)
from receipt_ocr.pipeline.models import (
    Batch,
    ErrorDetail,
    FailureStage,
    Outcome,
    RunResult,
    WorkItem,
)
from receipt_ocr.pipeline.ports import InferenceInvoker, PersistenceSink, ResultTransformer
from receipt_ocr.pipeline.rate_limiter import sleep_for_window
from receipt_ocr.pipeline.scheduler import make_batches
from receipt_ocr.resilience.retry import RetryConfig, retry_with_backoff
from receipt_ocr.utils.timing import StageTimers

logger = logging.getLogger(__name__)


def _generate_run_id() -> str:
    return str(uuid.uuid4())


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_run_parameters(
    items: list[WorkItem],
    batch_size: int,
    max_parallelism: int,
    rate_limit_window_ms: int,
) -> None:
    """Reject a run before any work starts.

    Raises:
        InvalidConfiguration: On a non-positive batch size or parallelism,
            a negative window, or duplicate item ids
    """
    if not _is_int(batch_size) or batch_size <= 0:
        raise InvalidConfiguration(
            f"batch_size must be a positive integer, got {batch_size!r}",
            field="batch_size",
        )
    if not _is_int(max_parallelism) or max_parallelism < 1:
        raise InvalidConfiguration(
            f"max_parallelism must be >= 1, got {max_parallelism!r}",
            field="max_parallelism",
        )
    if not isinstance(rate_limit_window_ms, (int, float)) or rate_limit_window_ms < 0:
        raise InvalidConfiguration(
            f"rate_limit_window_ms must be >= 0, got {rate_limit_window_ms!r}",
            field="rate_limit_window_ms",
        )

    seen: set[str] = set()
    for item in items:
        if item.item_id in seen:
            raise InvalidConfiguration(
                f"Duplicate item id: {item.item_id}", field="items"
            )
        seen.add(item.item_id)


@dataclass
class _ItemProgress:
    stage: FailureStage = FailureStage.INVOCATION
    attempts: int = 0


class PipelineController:
    """Drive work items through invoker, transformer and sink.

    Args:
        invoker: Inference service caller
        transformer: Raw payload to domain record mapper
        sink: Per-item and manifest persistence
        retry_config: Opt-in retry of transient inference errors. Without
            it every item is submitted to the invoker exactly once.
        item_timeout_seconds: Optional deadline for one item's invocation and
            transformation (persistence is not interrupted);
            expiry records the item as failed at the ``timeout`` stage
        clock: Monotonic time source, in seconds
    """

    def __init__(
        self,
        invoker: InferenceInvoker,
        transformer: ResultTransformer,
        sink: PersistenceSink,
        *,
        retry_config: Optional[RetryConfig] = None,
        item_timeout_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if item_timeout_seconds is not None and item_timeout_seconds <= 0:
            raise InvalidConfiguration(
                "item_timeout_seconds must be positive when set",
                field="item_timeout_seconds",
            )
        self.invoker = invoker
        self.transformer = transformer
        self.sink = sink
        self.retry_config = retry_config
        self.item_timeout_seconds = item_timeout_seconds
        self.clock = clock

    async def run(
        self,
        items: Iterable[WorkItem],
        batch_size: int,
        max_parallelism: int,
        rate_limit_window_ms: int,
        cancel_event: Optional[asyncio.Event] = None,
        run_id: Optional[str] = None,
    ) -> RunResult:
        """Process ``items`` batch by batch and return the aggregated result.

        Item failures never raise; inspect ``failed_count`` on the result.
        Setting ``cancel_event`` stops scheduling new batches: the batch in
        flight drains and the remaining items are reported as skipped.

        Raises:
            InvalidConfiguration: Before any invocation, on bad parameters or
                item ids whose record files would clash
            PersistenceError: If the output location cannot be prepared
        """
        items = list(items)
        validate_run_parameters(items, batch_size, max_parallelism, rate_limit_window_ms)
        self.sink.check_item_ids(item.item_id for item in items)
        batches = make_batches(items, batch_size)
        window_seconds = rate_limit_window_ms / 1000

        result = RunResult(
            run_id=run_id or _generate_run_id(),
            item_order={item.item_id: position for position, item in enumerate(items)},
            batches_total=len(batches),
        )
        timers = StageTimers()
        log_extra = {"run_id": result.run_id}

        self.sink.open()
        logger.info(
            f"Starting processing {len(items)} items in {len(batches)} batches",
            extra=log_extra,
        )

        try:
            for batch in batches:
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    result.skipped = [
                        item.item_id
                        for pending in batches[batch.index :]
                        for item in pending.items
                    ]
                    logger.warning(
                        f"Run cancelled before batch {batch.index + 1}/{len(batches)}; "
                        f"{len(result.skipped)} items skipped",
                        extra={**log_extra, "batch_index": batch.index},
                    )
                    break

                started = self.clock()
                await self._run_batch(batch, len(batches), max_parallelism, result, timers)
                result.batches_completed += 1

                if batch.index < len(batches) - 1:
                    elapsed = self.clock() - started
                    with timers.timer("rate_limit_wait"):
                        await sleep_for_window(elapsed, window_seconds, cancel_event)
        finally:
            await self._close_sink(result)

        result.timings = timers.snapshot()
        logger.info(
            "All processing completed",
            extra={
                **log_extra,
                "succeeded": result.succeeded_count,
                "failed": result.failed_count,
            },
        )
        return result

    async def _run_batch(
        self,
        batch: Batch,
        batch_count: int,
        max_parallelism: int,
        result: RunResult,
        timers: StageTimers,
    ) -> None:
        extra = {"run_id": result.run_id, "batch_index": batch.index}
        logger.info(f"Processing batch {batch.index + 1}/{batch_count}", extra=extra)

        outcomes: asyncio.Queue[Outcome] = asyncio.Queue()
        semaphore = asyncio.Semaphore(min(max_parallelism, len(batch)))

        async def _worker(item: WorkItem) -> None:
            async with semaphore:
                outcome = await self._process_item(item, result.run_id, batch.index, timers)
            outcomes.put_nowait(outcome)

        await asyncio.gather(*(_worker(item) for item in batch.items))

        settled = 0
        while not outcomes.empty():
            result.record(outcomes.get_nowait())
            settled += 1
        if settled != len(batch):
            raise RuntimeError(
                f"Batch {batch.index} settled {settled} of {len(batch)} items"
            )

        failed = sum(1 for item in batch.items if item.item_id in result.failed)
        logger.info(
            f"Batch {batch.index + 1}/{batch_count} settled",
            extra={**extra, "succeeded": len(batch) - failed, "failed": failed},
        )

    async def _process_item(
        self,
        item: WorkItem,
        run_id: str,
        batch_index: int,
        timers: StageTimers,
    ) -> Outcome:
        progress = _ItemProgress()
        started = time.perf_counter()
        logger.debug(
            f"Processing item: {item.source_ref}",
            extra={"run_id": run_id, "batch_index": batch_index, "item_id": item.item_id},
        )

        record: Optional[BaseModel] = None
        error: Optional[ErrorDetail] = None
        try:
            record = await self._extract_within_deadline(item, progress, timers)
            # Outside the deadline: a manifest entry must never belong to a
            # failed item.
            progress.stage = FailureStage.PERSISTENCE
            with timers.timer("persist"):
                await self.sink.write(item.item_id, record)
        except Exception as exc:
            record = None
            error = self._error_detail(item, progress.stage, exc)

        outcome = Outcome(
            item=item,
            record=record,
            error=error,
            attempts=max(progress.attempts, 1),
            duration_seconds=time.perf_counter() - started,
        )
        self._log_outcome(outcome, run_id, batch_index)
        return outcome

    async def _extract_within_deadline(
        self, item: WorkItem, progress: _ItemProgress, timers: StageTimers
    ) -> BaseModel:
        if self.item_timeout_seconds is None:
            return await self._extract(item, progress, timers)
        try:
            return await asyncio.wait_for(
                self._extract(item, progress, timers),
                timeout=self.item_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            progress.stage = FailureStage.TIMEOUT
            raise ItemTimeoutError(item.item_id, self.item_timeout_seconds) from exc

    async def _extract(
        self, item: WorkItem, progress: _ItemProgress, timers: StageTimers
    ) -> BaseModel:
        progress.stage = FailureStage.INVOCATION
        with timers.timer("invoke"):
            raw = await self._invoke(item, progress)

        progress.stage = FailureStage.TRANSFORMATION
        with timers.timer("transform"):
            return self.transformer.transform(raw)

    async def _invoke(self, item: WorkItem, progress: _ItemProgress) -> str:
        async def attempt() -> str:
            progress.attempts += 1
            return await self.invoker.invoke(item.source_ref)

        if self.retry_config is None or self.retry_config.max_attempts <= 1:
            return await attempt()
        return await retry_with_backoff(
            attempt, self.retry_config, (TransientInferenceError,)
        )

    def _error_detail(
        self, item: WorkItem, stage: FailureStage, exc: BaseException
    ) -> ErrorDetail:
        if not isinstance(exc, BaseError):
            logger.error(
                f"Unexpected error processing {item.source_ref}",
                exc_info=exc,
                extra={"item_id": item.item_id, "stage": stage.value},
            )
        return ErrorDetail.from_exception(stage, exc)

    def _log_outcome(self, outcome: Outcome, run_id: str, batch_index: int) -> None:
        extra = {
            "run_id": run_id,
            "batch_index": batch_index,
            "item_id": outcome.item.item_id,
            "duration_ms": round(outcome.duration_seconds * 1000),
        }
        if outcome.succeeded:
            logger.info(f"Successfully processed: {outcome.item.source_ref}", extra=extra)
            return
        logger.warning(
            f"Error processing {outcome.item.source_ref}: {outcome.error.message}",
            extra={
                **extra,
                "stage": outcome.error.stage.value,
                "error_code": outcome.error.error_code,
            },
        )

    async def _close_sink(self, result: RunResult) -> None:
        try:
            await self.sink.close()
        except PersistenceError:
            logger.error(
                "Final manifest flush failed; per-item record files are intact",
                exc_info=True,
                extra={"run_id": result.run_id, "error_code": "PERSISTENCE_FAILED"},
            )


def run_pipeline(controller: PipelineController, items: Iterable[WorkItem], **kwargs) -> RunResult:
    """Synchronous entry point: run ``controller.run`` on a fresh event loop."""
    return asyncio.run(controller.run(items, **kwargs))
