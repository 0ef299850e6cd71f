"""
card_valuation/workflow/coordinator.py: image reference -> IdentificationResult

In-process state machine:

    EXTRACTING -> REASONING -> {RESOLVING_SET, PRICING, VERIFYING_AUTHENTICITY} -> AGGREGATING

Every stage result is persisted as soon as it is known. Calling identify()
again with the same execution_id reloads stages that already succeeded and
only runs the rest.
"""

import logging
import random
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from typing import Any, Callable, Dict, Optional, Tuple

from card_valuation.authenticity.verifier import AuthenticityVerifier
from card_valuation.catalog.set_resolver import SetResolver
from card_valuation.config import (
    BRANCH_TIMEOUT_SECONDS, DEFAULT_CONDITION, PRICE_WINDOW_DAYS, STAGE_MAX_ATTEMPTS, STAGE_RETRY_BASE_DELAY
)
from card_valuation.errors import FatalPipelineError, RetryExhaustedError
from card_valuation.features.extractor import FeatureExtractionService
from card_valuation.models import (
    AuthenticityResult, CardMetadata, FeatureEnvelope, IdentificationResult, IdentifyRequest, PriceQuery,
    ReasoningHints, SetMatch, Stage, StageResult, StageStatus, Valuation, ValuationSummary, WorkflowExecution,
    WorkflowStatus
)
from card_valuation.pricing.orchestrator import PricingOrchestrator
from card_valuation.pricing.summary import ValuationSummarizer
from card_valuation.reasoning.service import OcrReasoningService
from card_valuation.utils.retry import RetryPolicy
from card_valuation.workflow.events import CardValuationCompleted, EventSink, LoggingEventSink
from card_valuation.workflow.store import BaseWorkflowStore, InMemoryWorkflowStore

logger = logging.getLogger(__name__)

BRANCH_STAGES = (Stage.RESOLVING_SET, Stage.PRICING, Stage.VERIFYING_AUTHENTICITY)


def price_query_for(metadata: CardMetadata, window_days: int = PRICE_WINDOW_DAYS) -> Optional[PriceQuery]:
    """PriceQuery from reasoned metadata, or None without a card name."""
    if not metadata.card_name:
        return None
    return PriceQuery(
        card_name=metadata.card_name,
        set_name=metadata.set_name,
        number=metadata.collector_number.value,
        rarity=metadata.rarity.value,
        condition=DEFAULT_CONDITION,
        window_days=window_days,
    )


class WorkflowCoordinator:
    """
    Runs one identification end to end.

    Only FatalPipelineError (e.g. missing image) escapes identify(). Every
    other failure ends up in the result's status and errors.

    Usage:
        coordinator = build_default_coordinator()
        result = coordinator.identify("uploads/charizard.jpg")
        print(result.status, result.valuation.value_median)
    """

    def __init__(
        self,
        extractor: FeatureExtractionService,
        reasoner: OcrReasoningService,
        resolver: SetResolver,
        pricing: PricingOrchestrator,
        verifier: Optional[AuthenticityVerifier] = None,
        summarizer: Optional[ValuationSummarizer] = None,
        store: Optional[BaseWorkflowStore] = None,
        event_sink: Optional[EventSink] = None,
        stage_policy: Optional[RetryPolicy] = None,
        branch_timeout: float = BRANCH_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        rng: Optional[random.Random] = None
    ):
        self.extractor = extractor
        self.reasoner = reasoner
        self.resolver = resolver
        self.pricing = pricing
        self.verifier = verifier or AuthenticityVerifier()
        self.summarizer = summarizer
        self.store = store if store is not None else InMemoryWorkflowStore()
        self.event_sink = event_sink or LoggingEventSink()
        self.stage_policy = stage_policy or RetryPolicy(
            max_attempts=STAGE_MAX_ATTEMPTS, base_delay=STAGE_RETRY_BASE_DELAY
        )
        self.branch_timeout = branch_timeout
        self._sleep = sleep
        self._rng = rng

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def identify(
        self,
        image_ref: str,
        hints: Optional[ReasoningHints] = None,
        execution_id: Optional[str] = None,
        force_refresh: bool = False
    ) -> IdentificationResult:
        """
        Identify and value the card in an image.

        Args:
            image_ref: Image store reference
            hints: Optional expected set/rarity
            execution_id: Resume (or create with) this id
            force_refresh: Bypass cached prices

        Raises:
            FatalPipelineError: input problems no retry can fix
        """
        execution = self._load_or_create(image_ref, hints, execution_id)
        stored = execution.completed(Stage.AGGREGATING)
        if stored is not None and execution.status == WorkflowStatus.SUCCEEDED:
            logger.info(f"Execution {execution.id} already succeeded; returning stored result")
            return IdentificationResult.model_validate(stored.output)

        if execution.stage_results:
            done = [s.value for s in execution.stage_results if execution.completed(s)]
            logger.info(f"Resuming execution {execution.id}; completed stages: {done}")
        self.store.set_status(execution.id, WorkflowStatus.RUNNING)

        errors: Dict[str, str] = {}
        request = execution.input

        try:
            envelope = self._sequential_stage(
                execution, Stage.EXTRACTING,
                lambda: self.extractor.extract(request.image_ref),
                FeatureEnvelope.model_validate,
            )
        except FatalPipelineError as e:
            self._record(execution.id, Stage.EXTRACTING, StageStatus.FAILED, error=str(e))
            self._finish(execution.id, WorkflowStatus.FAILED, errors={Stage.EXTRACTING.value: str(e)})
            raise
        except RetryExhaustedError as e:
            return self._finish(execution.id, WorkflowStatus.FAILED, errors={Stage.EXTRACTING.value: str(e.last_error)})

        try:
            metadata = self._sequential_stage(
                execution, Stage.REASONING,
                lambda: self.reasoner.interpret(envelope, request.hints),
                CardMetadata.model_validate,
            )
        except RetryExhaustedError as e:
            return self._finish(execution.id, WorkflowStatus.FAILED, errors={Stage.REASONING.value: str(e.last_error)},
                                metadata=None)

        set_match, valuation, authenticity = self._run_branches(execution, envelope, metadata, force_refresh, errors)
        valuation_summary = self._summarize(metadata, valuation)

        status = WorkflowStatus.PARTIAL if errors else WorkflowStatus.SUCCEEDED
        return self._finish(
            execution.id, status, errors=errors,
            metadata=metadata, set_match=set_match, valuation=valuation, valuation_summary=valuation_summary,
            authenticity=authenticity,
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _load_or_create(self, image_ref: str, hints: Optional[ReasoningHints], execution_id: Optional[str]) -> WorkflowExecution:
        if execution_id:
            existing = self.store.get(execution_id)
            if existing is not None:
                if existing.input.image_ref != image_ref:
                    logger.warning(f"Execution {execution_id} was created for {existing.input.image_ref}; "
                                   f"ignoring new image ref {image_ref}")
                return existing

        execution = WorkflowExecution(
            id=execution_id or uuid.uuid4().hex,
            input=IdentifyRequest(image_ref=image_ref, hints=hints),
        )
        self.store.create(execution)
        logger.info(f"Created execution {execution.id} for {image_ref}")
        return execution

    def _attempt(self, stage: Stage, fn: Callable[[], Any]) -> Tuple[Any, int]:
        """Run fn under the stage policy; returns (value, attempts used)."""
        failures = []
        value = self.stage_policy.call(
            fn,
            sleep=self._sleep,
            rng=self._rng,
            label=stage.value,
            on_retry=lambda attempt, error: failures.append(error),
        )
        return value, len(failures) + 1

    def _record(
        self,
        execution_id: str,
        stage: Stage,
        status: StageStatus,
        output: Optional[dict] = None,
        error: Optional[str] = None,
        attempts: int = 1
    ) -> None:
        self.store.save_stage(execution_id, StageResult(
            stage=stage, status=status, output=output, error=error, attempts=attempts,
        ))

    def _sequential_stage(self, execution: WorkflowExecution, stage: Stage, fn: Callable[[], Any], load: Callable[[dict], Any]):
        stored = execution.completed(stage)
        if stored is not None:
            logger.info(f"{stage.value}: reusing stored result")
            return load(stored.output)

        started = time.monotonic()
        try:
            value, attempts = self._attempt(stage, fn)
        except RetryExhaustedError as e:
            self._record(execution.id, stage, StageStatus.FAILED, error=str(e.last_error), attempts=e.attempts)
            logger.error(f"{stage.value} failed after {e.attempts} attempt(s): {e.last_error}")
            raise

        self._record(execution.id, stage, StageStatus.SUCCEEDED, output=value.model_dump(mode="json"), attempts=attempts)
        logger.info(f"{stage.value} completed in {time.monotonic() - started:.2f}s")
        return value

    def _branch_callables(
        self,
        envelope: FeatureEnvelope,
        metadata: CardMetadata,
        force_refresh: bool
    ) -> Dict[Stage, Callable[[], Any]]:
        def resolve_set() -> Optional[SetMatch]:
            return self.resolver.resolve_set(metadata.card_name, metadata.collector_number.value)

        def price() -> Valuation:
            query = price_query_for(metadata)
            if query is None:
                logger.warning("No card name; skipping pricing")
                return Valuation()
            return self.pricing.get_valuation(query, force_refresh=force_refresh)

        def verify() -> AuthenticityResult:
            return self.verifier.verify(envelope, metadata)

        return {
            Stage.RESOLVING_SET: resolve_set,
            Stage.PRICING: price,
            Stage.VERIFYING_AUTHENTICITY: verify,
        }

    @staticmethod
    def _dump_branch(stage: Stage, value: Any) -> dict:
        if stage == Stage.RESOLVING_SET:
            return {"set_match": value.model_dump(mode="json") if value is not None else None}
        return value.model_dump(mode="json")

    @staticmethod
    def _load_branch(stage: Stage, output: dict) -> Any:
        if stage == Stage.RESOLVING_SET:
            data = (output or {}).get("set_match")
            return SetMatch.model_validate(data) if data else None
        if stage == Stage.PRICING:
            return Valuation.model_validate(output)
        return AuthenticityResult.model_validate(output)

    def _run_branches(
        self,
        execution: WorkflowExecution,
        envelope: FeatureEnvelope,
        metadata: CardMetadata,
        force_refresh: bool,
        errors: Dict[str, str]
    ) -> Tuple[Optional[SetMatch], Optional[Valuation], Optional[AuthenticityResult]]:
        """
        Run the three independent branches concurrently.

        Each branch shares one deadline; a branch still running at the
        deadline is recorded as failed and its thread is abandoned.
        """
        values: Dict[Stage, Any] = {}
        callables = self._branch_callables(envelope, metadata, force_refresh)

        pending = []
        for stage in BRANCH_STAGES:
            stored = execution.completed(stage)
            if stored is not None:
                values[stage] = self._load_branch(stage, stored.output)
                logger.info(f"{stage.value}: reusing stored result")
            else:
                pending.append(stage)

        if pending:
            pool = ThreadPoolExecutor(max_workers=len(pending), thread_name_prefix="branch")
            try:
                futures: Dict[Stage, Future] = {
                    stage: pool.submit(self._attempt, stage, callables[stage]) for stage in pending
                }
                deadline = time.monotonic() + self.branch_timeout
                for stage, future in futures.items():
                    remaining = max(0.0, deadline - time.monotonic())
                    try:
                        value, attempts = future.result(timeout=remaining)
                    except FutureTimeoutError:
                        future.cancel()
                        message = f"timed out after {self.branch_timeout:.0f}s"
                        errors[stage.value] = message
                        self._record(execution.id, stage, StageStatus.FAILED, error=message)
                        logger.warning(f"{stage.value} {message}")
                        continue
                    except RetryExhaustedError as e:
                        errors[stage.value] = str(e.last_error)
                        self._record(execution.id, stage, StageStatus.FAILED, error=str(e.last_error),
                                     attempts=e.attempts)
                        logger.warning(f"{stage.value} failed after {e.attempts} attempt(s): {e.last_error}")
                        continue
                    except FatalPipelineError as e:
                        errors[stage.value] = str(e)
                        self._record(execution.id, stage, StageStatus.FAILED, error=str(e))
                        logger.error(f"{stage.value} failed fatally: {e}")
                        continue

                    values[stage] = value
                    self._record(execution.id, stage, StageStatus.SUCCEEDED,
                                 output=self._dump_branch(stage, value), attempts=attempts)
            finally:
                pool.shutdown(wait=False, cancel_futures=True)

        return (
            values.get(Stage.RESOLVING_SET),
            values.get(Stage.PRICING),
            values.get(Stage.VERIFYING_AUTHENTICITY),
        )

    def _summarize(self, metadata: CardMetadata, valuation: Optional[Valuation]) -> Optional[ValuationSummary]:
        """Narrative summary of a successful valuation, if a summarizer is configured."""
        if self.summarizer is None or valuation is None:
            return None
        query = price_query_for(metadata)
        if query is None:
            return None
        return self.summarizer.summarize(query, valuation)

    def _finish(
        self,
        execution_id: str,
        status: WorkflowStatus,
        errors: Dict[str, str],
        metadata: Optional[CardMetadata] = None,
        set_match: Optional[SetMatch] = None,
        valuation: Optional[Valuation] = None,
        authenticity: Optional[AuthenticityResult] = None,
        valuation_summary: Optional[ValuationSummary] = None
    ) -> IdentificationResult:
        result = IdentificationResult(
            execution_id=execution_id,
            status=status,
            card_metadata=metadata,
            set_match=set_match,
            valuation=valuation,
            valuation_summary=valuation_summary,
            authenticity=authenticity,
            errors=errors,
        )
        if status != WorkflowStatus.FAILED:
            self._record(execution_id, Stage.AGGREGATING, StageStatus.SUCCEEDED, output=result.model_dump(mode="json"))
        self.store.set_status(execution_id, status)
        logger.info(f"Execution {execution_id} finished with status {status.value}")

        try:
            self.event_sink.emit(CardValuationCompleted(execution_id=execution_id, status=status, result=result))
        except Exception as e:
            logger.error(f"Event sink failed for execution {execution_id}: {e}")
        return result


def build_default_coordinator(database_url: Optional[str] = None, in_memory: bool = False) -> WorkflowCoordinator:
    """
    Wire the production capabilities: local image store, Tesseract, OpenAI
    (reasoning and valuation summary), pokemontcg.io, PriceCharting and SQLite
    persistence.

    Args:
        database_url: SQLAlchemy URL (defaults to DATABASE_PATH)
        in_memory: Use process-local cache and execution stores instead of SQL
    """
    from card_valuation.catalog.pokemontcg import PokemonTCGCatalog
    from card_valuation.config import KNOWN_NAMES_PATH
    from card_valuation.database.schema import create_session_factory
    from card_valuation.ocr.tesseract_service import TesseractVisionService
    from card_valuation.pricing.cache import PricingCache
    from card_valuation.pricing.pokemontcg_adapter import PokemonTCGPriceAdapter
    from card_valuation.pricing.pricecharting_adapter import PriceChartingAdapter
    from card_valuation.pricing.summary import ValuationSummarizer
    from card_valuation.reasoning.llm_client import OpenAIInferenceClient
    from card_valuation.reasoning.service import load_known_names
    from card_valuation.storage.image_store import LocalImageStore
    from card_valuation.storage.kv_store import InMemoryKeyValueStore, SqlKeyValueStore
    from card_valuation.workflow.store import SqlWorkflowStore

    if in_memory:
        kv_store, workflow_store = InMemoryKeyValueStore(), InMemoryWorkflowStore()
    else:
        session_factory = create_session_factory(database_url)
        kv_store, workflow_store = SqlKeyValueStore(session_factory), SqlWorkflowStore(session_factory)

    llm = OpenAIInferenceClient()
    return WorkflowCoordinator(
        extractor=FeatureExtractionService(LocalImageStore(), TesseractVisionService()),
        reasoner=OcrReasoningService(llm, known_names=load_known_names(KNOWN_NAMES_PATH)),
        resolver=SetResolver(PokemonTCGCatalog()),
        pricing=PricingOrchestrator(
            [PokemonTCGPriceAdapter(), PriceChartingAdapter()],
            cache=PricingCache(kv_store),
        ),
        verifier=AuthenticityVerifier(),
        summarizer=ValuationSummarizer(llm),
        store=workflow_store,
    )
