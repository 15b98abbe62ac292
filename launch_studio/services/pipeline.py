"""
Pipeline Orchestrator - Drives the ordered stage sequence for a product.

States per (product, stage): NOT_STARTED (output null), IN_PROGRESS
(generation running), COMPLETE (output persisted). There is no persisted
failed state: a failed generation leaves the field null so the stage can be
run again.

Ordering inside start_stage:
1. Load the product through the ownership filter
2. Check upstream outputs (MissingContextError)
3. Take the per-(product, stage) lock (StageInProgressError)
4. Charge the stage cost (InsufficientCreditsError, nothing mutated)
5. Hand off to a background task that generates and persists

Charges are taken when the call is issued and are not refunded if the
generation later fails or times out.
"""

import asyncio
import time
from collections.abc import AsyncIterator, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from launch_studio.config import Settings
from launch_studio.exceptions import (
    MissingContextError,
    StageInProgressError,
    UpstreamGenerationError,
)
from launch_studio.models.api import Stage, StageState
from launch_studio.models.domain import (
    STAGE_OUTPUT_FIELDS,
    PipelineStatus,
    ProductData,
    SessionUser,
    StageStatus,
)
from launch_studio.observability.metrics import metrics
from launch_studio.observability.tracing import add_span_attributes, get_tracer, set_span_error
from launch_studio.services.completion import (
    CompletionChunk,
    CompletionFailed,
    CompletionFinished,
    CompletionRequest,
    CompletionService,
)
from launch_studio.services.content_store import ContentStore
from launch_studio.services.credit_ledger import CreditLedger
from launch_studio.services.prompts import STAGE_TEMPLATES, build_context

logger = get_logger(__name__)
tracer = get_tracer(__name__)

SessionScope = Callable[[], AbstractAsyncContextManager[AsyncSession]]

STAGE_ORDER: tuple[Stage, ...] = (
    Stage.MARKET_ANALYSIS,
    Stage.PRODUCT_PAGE,
    Stage.IMAGE_PROMPTS,
    Stage.AD_COPY,
)


# ============================================================================
# Stage Catalog
# ============================================================================


@dataclass(frozen=True)
class StageDefinition:
    """Static policy for one stage."""

    stage: Stage
    cost: int
    output_field: str
    requires: tuple[Stage, ...]
    attach_image: bool


def build_stage_catalog(settings: Settings) -> dict[Stage, StageDefinition]:
    """Build the ordered stage catalog with costs from settings."""
    return {
        Stage.MARKET_ANALYSIS: StageDefinition(
            stage=Stage.MARKET_ANALYSIS,
            cost=settings.stage_cost_market_analysis,
            output_field=STAGE_OUTPUT_FIELDS[Stage.MARKET_ANALYSIS],
            requires=(),
            attach_image=True,
        ),
        Stage.PRODUCT_PAGE: StageDefinition(
            stage=Stage.PRODUCT_PAGE,
            cost=settings.stage_cost_product_page,
            output_field=STAGE_OUTPUT_FIELDS[Stage.PRODUCT_PAGE],
            requires=(Stage.MARKET_ANALYSIS,),
            attach_image=False,
        ),
        Stage.IMAGE_PROMPTS: StageDefinition(
            stage=Stage.IMAGE_PROMPTS,
            cost=settings.stage_cost_image_prompts,
            output_field=STAGE_OUTPUT_FIELDS[Stage.IMAGE_PROMPTS],
            requires=(Stage.MARKET_ANALYSIS, Stage.PRODUCT_PAGE),
            attach_image=True,
        ),
        Stage.AD_COPY: StageDefinition(
            stage=Stage.AD_COPY,
            cost=settings.stage_cost_ad_copy,
            output_field=STAGE_OUTPUT_FIELDS[Stage.AD_COPY],
            requires=(Stage.MARKET_ANALYSIS, Stage.PRODUCT_PAGE),
            attach_image=False,
        ),
    }


def missing_requirements(product: ProductData, definition: StageDefinition) -> list[str]:
    """Names of required inputs that are still null or blank."""
    missing = []
    if not product.raw_text.strip():
        missing.append("raw_text")
    for upstream in definition.requires:
        if not product.output_for(upstream):
            missing.append(upstream.value)
    return missing


def next_runnable_stage(
    product: ProductData, catalog: dict[Stage, StageDefinition]
) -> Stage | None:
    """
    First stage, in fixed order, with no output and all inputs present.

    Computed from persisted product state only.
    """
    for stage in STAGE_ORDER:
        if product.output_for(stage):
            continue
        if not missing_requirements(product, catalog[stage]):
            return stage
    return None


def stage_states(
    product: ProductData,
    catalog: dict[Stage, StageDefinition],
    in_flight: frozenset[Stage] = frozenset(),
) -> tuple[StageStatus, ...]:
    """Per-stage state, cost and missing inputs."""
    statuses = []
    for stage in STAGE_ORDER:
        if stage in in_flight:
            state = StageState.IN_PROGRESS
        elif product.output_for(stage):
            state = StageState.COMPLETE
        else:
            state = StageState.NOT_STARTED
        statuses.append(
            StageStatus(
                stage=stage,
                state=state,
                cost=catalog[stage].cost,
                missing=tuple(missing_requirements(product, catalog[stage])),
            )
        )
    return tuple(statuses)


def build_completion_request(definition: StageDefinition, product: ProductData) -> CompletionRequest:
    """Build the completion request for a stage from product fields."""
    return CompletionRequest(
        system_instruction=STAGE_TEMPLATES[definition.stage].system_instruction,
        context=build_context(definition.stage, product),
        image=product.image if definition.attach_image else None,
    )


# ============================================================================
# Mutual Exclusion
# ============================================================================


class StageLockRegistry:
    """
    At most one in-flight generation per (product, stage) in this process.

    acquire() never awaits, so check-and-set is atomic on the event loop.
    Multiple worker processes do not share this registry.
    """

    def __init__(self) -> None:
        self._held: set[tuple[UUID, Stage]] = set()

    def acquire(self, product_id: UUID, stage: Stage) -> None:
        """Raises StageInProgressError if already held."""
        key = (product_id, stage)
        if key in self._held:
            raise StageInProgressError(product_id, stage.value)
        self._held.add(key)

    def release(self, product_id: UUID, stage: Stage) -> None:
        self._held.discard((product_id, stage))

    def is_held(self, product_id: UUID, stage: Stage) -> bool:
        return (product_id, stage) in self._held

    def held_for(self, product_id: UUID) -> frozenset[Stage]:
        return frozenset(stage for pid, stage in self._held if pid == product_id)


# ============================================================================
# Stage Run
# ============================================================================


@dataclass(frozen=True)
class StageChunk:
    """Incremental output relayed to the caller."""

    text: str


@dataclass(frozen=True)
class StageFinished:
    """Terminal success; the text has already been persisted (best effort)."""

    stage: Stage
    text: str


@dataclass(frozen=True)
class StageFailed:
    """Terminal failure; the stage field is left unchanged."""

    stage: Stage
    message: str
    retryable: bool = True


StageEvent = StageChunk | StageFinished | StageFailed


class StageRun:
    """
    Handle on one background generation.

    events() relays chunks to a single consumer and ends after the terminal
    event. result() awaits the terminal event independently of events().
    The generation keeps running if the consumer goes away.
    """

    def __init__(self, product_id: UUID, stage: Stage, credits_remaining: int | None) -> None:
        self.product_id = product_id
        self.stage = stage
        self.credits_remaining = credits_remaining
        self._queue: asyncio.Queue[StageEvent] = asyncio.Queue()
        self._outcome: asyncio.Future[StageFinished | StageFailed] = (
            asyncio.get_running_loop().create_future()
        )

    @property
    def done(self) -> bool:
        return self._outcome.done()

    def publish(self, event: StageEvent) -> None:
        if self._outcome.done():
            return
        self._queue.put_nowait(event)
        if isinstance(event, (StageFinished, StageFailed)):
            self._outcome.set_result(event)

    async def events(self) -> AsyncIterator[StageEvent]:
        while True:
            event = await self._queue.get()
            yield event
            if isinstance(event, (StageFinished, StageFailed)):
                return

    async def result(self) -> str:
        """
        Wait for the full output text.

        Raises:
            UpstreamGenerationError: Generation failed or timed out
        """
        outcome = await asyncio.shield(self._outcome)
        if isinstance(outcome, StageFailed):
            raise UpstreamGenerationError(outcome.message, retryable=outcome.retryable)
        return outcome.text


# ============================================================================
# Orchestrator
# ============================================================================


class PipelineOrchestrator:
    """Runs pipeline stages for products on behalf of authenticated users."""

    def __init__(
        self,
        session_scope: SessionScope,
        completion: CompletionService,
        catalog: dict[Stage, StageDefinition],
        locks: StageLockRegistry | None = None,
        generation_timeout: float = 60.0,
    ) -> None:
        self.session_scope = session_scope
        self.completion = completion
        self.catalog = catalog
        self.locks = locks or StageLockRegistry()
        self.generation_timeout = generation_timeout
        self._tasks: set[asyncio.Task[None]] = set()

    async def start_stage(self, user: SessionUser, product_id: UUID, stage: Stage) -> StageRun:
        """
        Validate, lock, charge, then start generating in the background.

        Raises:
            ProductNotFoundError: Product missing or not owned by user
            MissingContextError: Upstream output missing
            StageInProgressError: Same stage already generating for this product
            InsufficientCreditsError: Balance below stage cost
        """
        definition = self.catalog[stage]

        async with self.session_scope() as session:
            product = await ContentStore(session).get_product(product_id, owner_id=user.user_id)

            missing = missing_requirements(product, definition)
            if missing:
                metrics.record_stage_run(stage.value, "rejected")
                logger.info(
                    "stage_missing_context",
                    product_id=str(product_id),
                    stage=stage.value,
                    missing=missing,
                )
                raise MissingContextError(stage.value, missing)

            self.locks.acquire(product_id, stage)
            try:
                credits_remaining = None
                if definition.cost > 0:
                    entry = await CreditLedger(session).charge(
                        user.user_id,
                        definition.cost,
                        description=f"{stage.value} generation",
                        product_id=product_id,
                        stage=stage.value,
                    )
                    credits_remaining = entry.balance_after
                    metrics.record_charge(stage.value, definition.cost)

                run = StageRun(product_id, stage, credits_remaining)
                task = asyncio.create_task(
                    self._generate(user, definition, product, run),
                    name=f"stage:{product_id}:{stage.value}",
                )
            except BaseException:
                self.locks.release(product_id, stage)
                raise

        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

        logger.info(
            "stage_started",
            product_id=str(product_id),
            user_id=str(user.user_id),
            stage=stage.value,
            cost=definition.cost,
            credits_remaining=credits_remaining,
        )
        return run

    async def run_stage(self, user: SessionUser, product_id: UUID, stage: Stage) -> str:
        """Start a stage and wait for its full output."""
        run = await self.start_stage(user, product_id, stage)
        return await run.result()

    async def confirm_stage_output(
        self, user: SessionUser, product_id: UUID, stage: Stage, text: str
    ) -> ProductData:
        """
        Idempotent client-side save of a finished stage, keyed by (product, stage).

        Raises:
            ProductNotFoundError: Product missing or not owned by user
            MissingContextError: Upstream output missing
        """
        definition = self.catalog[stage]
        async with self.session_scope() as session:
            store = ContentStore(session)
            product = await store.get_product(product_id, owner_id=user.user_id)
            missing = missing_requirements(product, definition)
            if missing:
                raise MissingContextError(stage.value, missing)
            return await store.save_stage_output(product_id, user.user_id, stage, text)

    async def get_pipeline_status(self, user: SessionUser, product_id: UUID) -> PipelineStatus:
        """
        Compute per-stage state and the next runnable stage.

        Raises:
            ProductNotFoundError: Product missing or not owned by user
        """
        async with self.session_scope() as session:
            product = await ContentStore(session).get_product(product_id, owner_id=user.user_id)
            balance = await CreditLedger(session).get_balance(user.user_id)

        return PipelineStatus(
            product_id=product_id,
            stages=stage_states(product, self.catalog, self.locks.held_for(product_id)),
            next_stage=next_runnable_stage(product, self.catalog),
            credits=balance,
        )

    async def aclose(self, timeout: float | None = None) -> None:
        """Wait for in-flight generations (shutdown), cancelling any that overrun."""
        if not self._tasks:
            return
        pending = set(self._tasks)
        logger.info("waiting_for_stage_generations", count=len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

    # ========================================================================
    # Background Generation
    # ========================================================================

    async def _generate(
        self,
        user: SessionUser,
        definition: StageDefinition,
        product: ProductData,
        run: StageRun,
    ) -> None:
        stage = definition.stage
        started = time.monotonic()
        metrics.stages_in_progress.inc()

        with tracer.start_as_current_span("stage_generation") as span:
            add_span_attributes(span, stage=stage.value, product_id=product.product_id)
            try:
                final_text: str | None = None
                failure: CompletionFailed | None = None
                request = build_completion_request(definition, product)

                async with asyncio.timeout(self.generation_timeout):
                    async for event in self.completion.stream(request):
                        if isinstance(event, CompletionChunk):
                            run.publish(StageChunk(event.text))
                        elif isinstance(event, CompletionFinished):
                            final_text = event.text
                        elif isinstance(event, CompletionFailed):
                            failure = event

                if failure is not None or final_text is None:
                    message = failure.message if failure else "Completion stream ended without a result"
                    retryable = failure.retryable if failure else True
                    self._fail(run, stage, product.product_id, "failed", message, retryable, started)
                    return

                await self._persist(user, product.product_id, stage, final_text)
                run.publish(StageFinished(stage, final_text))
                metrics.record_stage_run(stage.value, "completed", time.monotonic() - started)
                logger.info(
                    "stage_completed",
                    product_id=str(product.product_id),
                    stage=stage.value,
                    chars=len(final_text),
                    duration_seconds=time.monotonic() - started,
                )

            except TimeoutError as exc:
                set_span_error(span, exc)
                self._fail(
                    run,
                    stage,
                    product.product_id,
                    "timeout",
                    f"Generation timed out after {self.generation_timeout:g}s",
                    True,
                    started,
                )
            except asyncio.CancelledError:
                self._fail(
                    run, stage, product.product_id, "cancelled", "Generation cancelled", True, started
                )
                raise
            except Exception as exc:
                set_span_error(span, exc)
                logger.error(
                    "stage_generation_crashed",
                    product_id=str(product.product_id),
                    stage=stage.value,
                    error=str(exc),
                    exc_info=True,
                )
                metrics.record_error(type(exc).__name__, "stage_generation")
                self._fail(
                    run, stage, product.product_id, "failed", "Generation failed", True, started
                )
            finally:
                self.locks.release(product.product_id, stage)
                metrics.stages_in_progress.dec()

    async def _persist(self, user: SessionUser, product_id: UUID, stage: Stage, text: str) -> None:
        """Best-effort server-side save; the client confirm-save is the backstop."""
        try:
            async with self.session_scope() as session:
                await ContentStore(session).save_stage_output(product_id, user.user_id, stage, text)
        except Exception as exc:
            metrics.record_error(type(exc).__name__, "stage_persist")
            logger.error(
                "stage_output_persist_failed",
                product_id=str(product_id),
                stage=stage.value,
                error=str(exc),
                exc_info=True,
            )

    def _fail(
        self,
        run: StageRun,
        stage: Stage,
        product_id: UUID,
        outcome: str,
        message: str,
        retryable: bool,
        started: float,
    ) -> None:
        run.publish(StageFailed(stage, message, retryable))
        metrics.record_stage_run(stage.value, outcome, time.monotonic() - started)
        logger.warning(
            "stage_failed",
            product_id=str(product_id),
            stage=stage.value,
            outcome=outcome,
            reason=message,
        )
