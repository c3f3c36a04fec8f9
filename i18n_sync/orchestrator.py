"""
Batch translation orchestration.

Work items are grouped per namespace and cut into batches. Each batch is
handled by ``translate_batch``, a worker that shares no state with other
workers and always returns a ``BatchResult``. Only the coordinator
(``run_translation_process``) folds results into the run's translations.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from aiolimiter import AsyncLimiter
from tqdm.asyncio import tqdm

from i18n_sync.errors import MalformedResponseError, QuotaExceededError, TranslationServiceError
from i18n_sync.key_unifier import ExistingMaps, UnifiedKeys
from i18n_sync.llm_client import TranslationService
from i18n_sync.operator_io import StopSignal
from i18n_sync.store import NamespaceId
from i18n_sync.sync_policy import SyncMode, WorkItem
from i18n_sync.translation_validator import (
    FallbackEvent,
    Translations,
    merge_batch_translations,
    structure_batch_translations,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 50

SleepFunc = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class BatchItem:
    key: str
    full_key: str
    source_text: str
    derived: bool = False


@dataclass(frozen=True)
class Batch:
    namespace: NamespaceId
    items: Tuple[BatchItem, ...]
    target_languages: Tuple[str, ...]
    context: str = ""
    index: int = 0

    @property
    def keys(self) -> List[str]:
        return [item.key for item in self.items]

    @property
    def source_texts(self) -> Dict[str, str]:
        return {item.full_key: item.source_text for item in self.items}


class BatchStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


@dataclass
class BatchResult:
    batch: Batch
    status: BatchStatus
    translations: Dict[str, Dict[str, str]] = field(default_factory=dict)
    fallbacks: List[FallbackEvent] = field(default_factory=list)
    attempts: int = 0
    total_delay: float = 0.0
    error_type: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class RetryPolicy:
    max_retries: int = 5
    base_delay: float = 3.0
    quota_backoff_factor: float = 2.0
    malformed_delay_scale: float = 0.5
    jitter_min: float = 0.5
    jitter_max: float = 1.5


@dataclass
class OrchestratorSettings:
    mode: SyncMode
    driver: str = "concurrent"
    concurrency: int = 15
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    rate_limit: int = 60
    rate_period: float = 60.0


@dataclass
class RunSummary:
    total_batches: int = 0
    attempted_batches: int = 0
    succeeded_batches: int = 0
    failed_batches: int = 0
    not_attempted_batches: int = 0
    entries_written: int = 0
    fallback_count: int = 0
    stopped: bool = False
    failed_keys: Dict[str, List[str]] = field(default_factory=dict)
    not_attempted_keys: Dict[str, List[str]] = field(default_factory=dict)
    translations: Translations = field(default_factory=dict)

    @property
    def failed_key_count(self) -> int:
        return sum(len(keys) for keys in self.failed_keys.values())


def build_batches(
        work_items: Sequence[WorkItem],
        unified: UnifiedKeys,
        target_languages: Sequence[str],
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        context: str = ""
) -> List[Batch]:
    """
    Group work items per namespace and cut each group into batches of at most ``chunk_size``.
    A batch never spans two namespaces.
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be at least 1")

    grouped: Dict[NamespaceId, List[WorkItem]] = {}
    for item in work_items:
        grouped.setdefault(item.namespace, []).append(item)

    batches: List[Batch] = []
    languages = tuple(target_languages)
    for namespace in sorted(grouped):
        items = sorted(grouped[namespace])
        for start in range(0, len(items), chunk_size):
            chunk = tuple(
                BatchItem(
                    key=item.key,
                    full_key=item.full_key,
                    source_text=unified.source_text[item.full_key],
                    derived=unified.is_derived(item.full_key),
                )
                for item in items[start:start + chunk_size]
            )
            batches.append(Batch(namespace, chunk, languages, context, len(batches)))
    logger.info("Prepared %d batch(es) from %d work item(s).", len(batches), len(work_items))
    return batches


def compute_backoff_delay(
        error: Exception,
        attempt: int,
        policy: RetryPolicy,
        rng: Optional[random.Random] = None
) -> float:
    """
    Delay before retrying after ``attempt`` (1-based) failed with ``error``.

    - quota errors: ``base * factor ** attempt + jitter``, or the server's Retry-After hint;
    - malformed output: ``base * scale * attempt + jitter``;
    - anything else: ``base * attempt + jitter``.
    """
    rng = rng or random
    jitter = rng.uniform(policy.jitter_min, policy.jitter_max)
    if isinstance(error, QuotaExceededError):
        if error.retry_after is not None:
            return float(error.retry_after)
        return policy.base_delay * (policy.quota_backoff_factor ** attempt) + jitter
    if isinstance(error, MalformedResponseError):
        return policy.base_delay * policy.malformed_delay_scale * attempt + jitter
    return policy.base_delay * attempt + jitter


async def translate_batch(
        batch: Batch,
        service: TranslationService,
        policy: RetryPolicy,
        rate_limiter: Optional[AsyncLimiter] = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: Optional[random.Random] = None
) -> BatchResult:
    """
    Translate one batch, retrying transient service errors.

    Never raises: every outcome, including unexpected errors, comes back as a BatchResult.
    """
    total_delay = 0.0
    attempt = 0
    last_error: Optional[Exception] = None

    while attempt < policy.max_retries:
        attempt += 1
        try:
            if rate_limiter is not None:
                async with rate_limiter:
                    response = await service.translate(
                        batch.source_texts, batch.target_languages, batch.context, batch.namespace.label
                    )
            else:
                response = await service.translate(
                    batch.source_texts, batch.target_languages, batch.context, batch.namespace.label
                )
            structured, fallbacks = structure_batch_translations(response, batch.items, batch.target_languages)
            return BatchResult(
                batch=batch,
                status=BatchStatus.SUCCESS,
                translations=structured,
                fallbacks=fallbacks,
                attempts=attempt,
                total_delay=total_delay,
            )
        except TranslationServiceError as service_exc:
            last_error = service_exc
            if attempt >= policy.max_retries:
                break
            delay = compute_backoff_delay(service_exc, attempt, policy, rng)
            logger.warning(
                "%s for batch %d (%s): %s. Retrying in %.2f seconds (Attempt %d/%d)",
                service_exc.__class__.__name__, batch.index, batch.namespace.label, service_exc,
                delay, attempt, policy.max_retries
            )
            total_delay += delay
            await sleep(delay)
        except Exception as general_exc:
            logger.error(
                "Unexpected error for batch %d (%s): %s", batch.index, batch.namespace.label, general_exc,
                exc_info=True
            )
            return BatchResult(
                batch=batch,
                status=BatchStatus.FAILED,
                attempts=attempt,
                total_delay=total_delay,
                error_type=general_exc.__class__.__name__,
                error_message=str(general_exc),
            )

    logger.error(
        "Batch %d (%s) failed after %d attempt(s): %s",
        batch.index, batch.namespace.label, attempt, last_error
    )
    return BatchResult(
        batch=batch,
        status=BatchStatus.FAILED,
        attempts=attempt,
        total_delay=total_delay,
        error_type=last_error.__class__.__name__ if last_error else None,
        error_message=str(last_error) if last_error else None,
    )


def fold_result(
        summary: RunSummary,
        result: BatchResult,
        mode: SyncMode,
        existing: ExistingMaps
) -> None:
    """Apply one batch result to the run summary. Called by the coordinator only."""
    label = result.batch.namespace.label
    if result.status is BatchStatus.NOT_ATTEMPTED:
        summary.not_attempted_batches += 1
        summary.not_attempted_keys.setdefault(label, []).extend(result.batch.keys)
        return

    summary.attempted_batches += 1
    if result.status is BatchStatus.SUCCESS:
        summary.succeeded_batches += 1
        summary.fallback_count += len(result.fallbacks)
        summary.entries_written += merge_batch_translations(
            summary.translations, result.batch.namespace, result.translations, mode, existing
        )
    else:
        summary.failed_batches += 1
        summary.failed_keys.setdefault(label, []).extend(result.batch.keys)


async def run_concurrent(
        batches: Sequence[Batch],
        service: TranslationService,
        settings: OrchestratorSettings,
        existing: ExistingMaps,
        summary: RunSummary
) -> None:
    semaphore = asyncio.Semaphore(max(settings.concurrency, 1))
    rate_limiter = AsyncLimiter(max_rate=settings.rate_limit, time_period=settings.rate_period)

    async def worker(batch: Batch) -> BatchResult:
        async with semaphore:
            return await translate_batch(batch, service, settings.retry_policy, rate_limiter)

    tasks = [worker(batch) for batch in batches]
    for coro in tqdm.as_completed(tasks, desc="Translating batches", unit="batch"):
        result = await coro
        fold_result(summary, result, settings.mode, existing)


async def run_serial(
        batches: Sequence[Batch],
        service: TranslationService,
        settings: OrchestratorSettings,
        existing: ExistingMaps,
        summary: RunSummary,
        stop_signal: Optional[StopSignal] = None
) -> None:
    rate_limiter = AsyncLimiter(max_rate=settings.rate_limit, time_period=settings.rate_period)
    progress = tqdm(total=len(batches), desc="Translating batches", unit="batch")
    try:
        for position, batch in enumerate(batches):
            if stop_signal is not None and stop_signal.is_set():
                logger.warning("Stop requested; %d batch(es) will not be attempted.", len(batches) - position)
                summary.stopped = True
                for remaining in batches[position:]:
                    fold_result(summary, BatchResult(remaining, BatchStatus.NOT_ATTEMPTED), settings.mode, existing)
                break
            result = await translate_batch(batch, service, settings.retry_policy, rate_limiter)
            fold_result(summary, result, settings.mode, existing)
            progress.update(1)
    finally:
        progress.close()


async def run_translation_process(
        batches: Sequence[Batch],
        service: TranslationService,
        settings: OrchestratorSettings,
        existing: ExistingMaps,
        stop_signal: Optional[StopSignal] = None
) -> RunSummary:
    """Dispatch all batches with the configured driver and return the folded summary."""
    summary = RunSummary(total_batches=len(batches))
    if not batches:
        return summary

    if settings.driver == "serial":
        await run_serial(batches, service, settings, existing, summary, stop_signal)
    else:
        if stop_signal is not None and stop_signal.is_set():
            logger.warning("Stop requested before dispatch; cancellation is only honoured between batches in serial mode.")
        await run_concurrent(batches, service, settings, existing, summary)

    logger.info(
        "Batches: %d total, %d attempted, %d succeeded, %d failed, %d not attempted.",
        summary.total_batches, summary.attempted_batches, summary.succeeded_batches,
        summary.failed_batches, summary.not_attempted_batches
    )
    return summary
