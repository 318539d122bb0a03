"""End-to-end discovery pipeline orchestration."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .catalog import CatalogClient
from .config import Config
from .entity_extraction import EntityExtractor, LLMEntityExtractor
from .fallback import BroadFallbackScanner
from .models import (Accepted, CatalogDataset, Failed, NormalizedQuery, Outcome,
                     PipelineResult, QueryVariant, Rejected, Resource)
from .query_builder import build_variants
from .relevance import RelevanceFilter
from .sampler import ResourceFetchError, ResourceSampler, SamplingCancelled, rank_resources
from .search import SearchExecutor
from .utils import current_year

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "Per ora non riesco a scovare dati utili, scusa."
DATA_MESSAGE = "Dati reali trovati."
BROAD_LABEL = "Ricerca ampia per geografia"


class InvalidQuestionError(ValueError):
    """The question itself is unusable (not a string, blank or too long)."""


class CancelScope:
    """Cancellation signal for one invocation.

    Set when the caller's event fires, when the time budget runs out, or when
    the pipeline stops itself after the first acceptance. Usable both as a
    zero-argument predicate and as an event-like object with `is_set()`.
    """

    def __init__(self, caller_event: Optional[threading.Event] = None,
                 budget_seconds: Optional[float] = None):
        self.caller_event = caller_event
        self._stop = threading.Event()
        self.deadline = time.monotonic() + budget_seconds if budget_seconds else None

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def is_set(self) -> bool:
        if self._stop.is_set():
            return True
        if self.caller_event is not None and self.caller_event.is_set():
            return True
        return self.expired()

    def stop(self):
        self._stop.set()

    def __call__(self) -> bool:
        return self.is_set()


@dataclass(frozen=True)
class Attempt:
    """One (dataset, resource) entry of the work queue."""

    position: int
    dataset: CatalogDataset
    resource: Resource


def build_work_queue(datasets: Sequence[CatalogDataset]) -> List[Attempt]:
    """Flatten ranked datasets into ranked (dataset, resource) attempts."""
    queue = []
    for dataset in datasets:
        for resource in rank_resources(dataset):
            queue.append(Attempt(len(queue), dataset, resource))
    return queue


def validate_question(question: object, max_chars: int) -> str:
    """Return the stripped question or raise InvalidQuestionError."""
    if not isinstance(question, str):
        raise InvalidQuestionError(f"question must be a string, got {type(question).__name__}")
    question = question.strip()
    if not question:
        raise InvalidQuestionError("question is empty")
    if len(question) > max_chars:
        raise InvalidQuestionError(f"question exceeds {max_chars} characters")
    return question


class DiscoveryPipeline:
    """Question in, filtered sample rows out."""

    def __init__(self, config: Config,
                 extractor: Optional[EntityExtractor] = None,
                 client: Optional[CatalogClient] = None,
                 sampler: Optional[ResourceSampler] = None,
                 clock: Callable[[], int] = current_year):
        self.config = config
        self.ontology = config.build_ontology()
        self.gazetteer = config.build_gazetteer()

        if extractor is None:
            llm = None
            if config.use_llm:
                llm = LLMEntityExtractor(config.openai_api_key, config.openai_model,
                                         config.llm_timeout)
            extractor = EntityExtractor(self.ontology, self.gazetteer, llm=llm, clock=clock)

        self.extractor = extractor
        self.client = client or CatalogClient(config)
        self.sampler = sampler or ResourceSampler(config)
        self.search = SearchExecutor(self.client)
        self.fallback = BroadFallbackScanner(self.client, config, self.ontology)
        self.relevance = RelevanceFilter(config, self.gazetteer, config.build_noise_guard(), clock)

    def plan(self, question: str) -> Tuple[NormalizedQuery, List[QueryVariant]]:
        """Normalize a question and build its variants without searching."""
        question = validate_question(question, self.config.max_question_chars)
        normalized = self.extractor.extract(question)
        return normalized, self._variants(normalized)

    def _variants(self, normalized: NormalizedQuery) -> List[QueryVariant]:
        start, end = self.relevance.year_range(normalized)
        years = normalized.years or tuple(range(start, end + 1))
        return build_variants(normalized.topic, normalized.geography, self.ontology,
                              self.config, years)

    def run(self, question: str, cancel_event: Optional[threading.Event] = None) -> PipelineResult:
        """Run discovery for one question.

        Args:
            question: Natural-language question
            cancel_event: Optional caller cancellation; aborts in-flight fetches

        Returns:
            PipelineResult; no usable data is a normal result with has_real_data False

        Raises:
            InvalidQuestionError: If the question is not a non-blank string within limits
        """
        question = validate_question(question, self.config.max_question_chars)
        scope = CancelScope(cancel_event, self.config.time_budget_seconds)

        normalized = self.extractor.extract(question)
        variants = self._variants(normalized)
        logger.info(f"Built {len(variants)} search variants")

        outcome = self.search.execute(variants, cancelled=scope)
        candidates = outcome.datasets
        label = outcome.variant.label if outcome.variant else None
        attempts = outcome.attempts

        if not candidates and not scope.is_set():
            candidates = self.fallback.scan(normalized.geography, normalized.topic, cancelled=scope)
            if candidates:
                label = BROAD_LABEL
                attempts += 1

        candidates = candidates[:self.config.max_candidates]
        summaries = [ds.summary() for ds in candidates]

        if scope.is_set():
            logger.warning("Invocation cancelled or out of time before sampling")
            return self._no_data(normalized, label, attempts)

        queue = build_work_queue(candidates)
        logger.info(f"Sampling up to {len(queue)} resources from {len(candidates)} datasets")

        found = self._consume(queue, normalized, scope)
        if found is None:
            return self._no_data(normalized, label, attempts, summaries)

        attempt, accepted = found
        logger.info(f"Accepted {len(accepted.rows)} rows from {attempt.dataset.title!r} "
                    f"({accepted.reason})")
        return PipelineResult(
            datasets=summaries,
            rows=list(accepted.rows),
            has_real_data=True,
            normalized=normalized,
            variant_label=label,
            attempts=attempts,
            message=DATA_MESSAGE,
        )

    def _no_data(self, normalized: NormalizedQuery, label: Optional[str], attempts: int,
                 summaries=None) -> PipelineResult:
        return PipelineResult(
            datasets=summaries or [],
            rows=[],
            has_real_data=False,
            normalized=normalized,
            variant_label=label,
            attempts=attempts,
            message=NO_DATA_MESSAGE,
        )

    def attempt(self, item: Attempt, normalized: NormalizedQuery, scope: CancelScope) -> Outcome:
        """Sample one resource and judge it. Never raises for network or payload problems."""
        try:
            sample = self.sampler.sample(item.resource, scope)
        except SamplingCancelled:
            return Failed('cancelled')
        except ResourceFetchError as e:
            return Failed(str(e))

        if not sample:
            return Rejected(sample.note or 'empty_sample')
        return self.relevance.evaluate(sample, item.dataset, item.resource, normalized)

    def _log_outcome(self, item: Attempt, outcome: Outcome):
        if isinstance(outcome, Failed):
            logger.warning(f"resource:failed {item.resource.url}: {outcome.error}")
        elif isinstance(outcome, Rejected):
            logger.debug(f"resource:rejected {item.resource.url}: {outcome.reason}")

    def _consume(self, queue: List[Attempt], normalized: NormalizedQuery,
                 scope: CancelScope) -> Optional[Tuple[Attempt, Accepted]]:
        """Consume the work queue in order until the first acceptance."""
        if not queue:
            return None
        if self.config.sampling_workers > 1:
            return self._consume_parallel(queue, normalized, scope)

        with tqdm(total=len(queue), desc="Sampling resources",
                  disable=not self.config.show_progress) as pbar:
            for item in queue:
                if scope.is_set():
                    logger.warning("Sampling aborted")
                    return None
                outcome = self.attempt(item, normalized, scope)
                pbar.update(1)
                if scope.is_set():
                    return None
                if isinstance(outcome, Accepted):
                    return item, outcome
                self._log_outcome(item, outcome)
        return None

    def _consume_parallel(self, queue: List[Attempt], normalized: NormalizedQuery,
                          scope: CancelScope) -> Optional[Tuple[Attempt, Accepted]]:
        """Prefetch attempts on a thread pool, judging results in queue order.

        The winner is the earliest accepted position, exactly as in sequential
        consumption; later attempts are aborted once it is known.
        """
        executor = ThreadPoolExecutor(max_workers=self.config.sampling_workers)
        try:
            futures = [executor.submit(self.attempt, item, normalized, scope) for item in queue]
            with tqdm(total=len(queue), desc="Sampling resources",
                      disable=not self.config.show_progress) as pbar:
                for item, future in zip(queue, futures):
                    try:
                        outcome = future.result(timeout=scope.remaining())
                    except FutureTimeout:
                        logger.warning("Sampling ran out of time")
                        return None
                    pbar.update(1)
                    if scope.is_set():
                        return None
                    if isinstance(outcome, Accepted):
                        return item, outcome
                    self._log_outcome(item, outcome)
            return None
        finally:
            scope.stop()
            executor.shutdown(wait=False, cancel_futures=True)
