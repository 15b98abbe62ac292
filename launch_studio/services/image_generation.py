"""
Image Studio - Prompt optimization and image generation for a product.

Neither operation is charged. Optimization is gated on the caller holding
at least one credit, image generation is free.
"""

import base64
from uuid import UUID

from structlog import get_logger
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from launch_studio.config import Settings
from launch_studio.db.models import utc_now
from launch_studio.exceptions import InsufficientCreditsError, RateLimitedError
from launch_studio.models.domain import GeneratedImage, SessionUser
from launch_studio.observability.metrics import metrics
from launch_studio.services.completion import (
    CompletionRequest,
    CompletionService,
    ImageGenerator,
    ImageResult,
)
from launch_studio.services.content_store import ContentStore
from launch_studio.services.credit_ledger import CreditLedger
from launch_studio.services.pipeline import SessionScope
from launch_studio.services.prompts import OPTIMIZE_IMAGE_PROMPT_INSTRUCTION, clean_image_prompt

logger = get_logger(__name__)

# Balance required to use the prompt optimizer
OPTIMIZE_MIN_BALANCE = 1


def to_data_uri(result: ImageResult) -> str:
    """Encode generated bytes as a data: URI."""
    encoded = base64.b64encode(result.data).decode("ascii")
    return f"data:{result.mime_type};base64,{encoded}"


class ImageStudio:
    """Image prompt optimization and generation bound to a product."""

    def __init__(
        self,
        session_scope: SessionScope,
        completion: CompletionService,
        generator: ImageGenerator,
        settings: Settings,
    ) -> None:
        self.session_scope = session_scope
        self.completion = completion
        self.generator = generator
        self.max_retries = settings.image_max_retries
        self.retry_backoff = settings.image_retry_backoff_seconds
        self.prompt_max_chars = settings.image_prompt_max_chars
        self.optimized_max_chars = settings.optimized_prompt_max_chars

    async def optimize_prompt(self, user: SessionUser, product_id: UUID, prompt: str) -> str:
        """
        Fold the reference image's visual traits into a base prompt.

        Without a reference image the prompt is only cleaned.

        Raises:
            ProductNotFoundError: Product missing or not owned by user
            InsufficientCreditsError: Balance below one credit
            UpstreamGenerationError: Completion service failed
        """
        async with self.session_scope() as session:
            product = await ContentStore(session).get_product(product_id, owner_id=user.user_id)
            balance = await CreditLedger(session).get_balance(user.user_id)

        if balance < OPTIMIZE_MIN_BALANCE:
            raise InsufficientCreditsError(balance, OPTIMIZE_MIN_BALANCE)

        if product.image is None:
            return clean_image_prompt(prompt, self.optimized_max_chars)

        optimized = await self.completion.complete(
            CompletionRequest(
                system_instruction=OPTIMIZE_IMAGE_PROMPT_INSTRUCTION,
                context=f"Base Prompt to Optimize:\n{prompt}",
                image=product.image,
            )
        )
        logger.info(
            "image_prompt_optimized",
            product_id=str(product_id),
            input_chars=len(prompt),
            output_chars=len(optimized),
        )
        return clean_image_prompt(optimized, self.optimized_max_chars)

    async def generate_image(
        self, user: SessionUser, product_id: UUID, prompt: str, aspect_ratio: str
    ) -> GeneratedImage:
        """
        Generate one image and prepend it to the product's history.

        Rate limits are retried with linearly increasing backoff.

        Raises:
            ProductNotFoundError: Product missing or not owned by user
            RateLimitedError: Still rate limited after the last retry
            UpstreamGenerationError: Image model failed
        """
        async with self.session_scope() as session:
            product = await ContentStore(session).get_product(product_id, owner_id=user.user_id)

        prompt = prompt[: self.prompt_max_chars]

        try:
            result = await self._generate_with_retry(prompt, aspect_ratio, product)
        except Exception:
            metrics.record_image_generation("failed")
            raise

        image = GeneratedImage(
            data_uri=to_data_uri(result),
            prompt=prompt,
            aspect_ratio=aspect_ratio,
            created_at=utc_now().isoformat(),
        )
        async with self.session_scope() as session:
            await ContentStore(session).append_generated_image(product_id, user.user_id, image)

        metrics.record_image_generation("success")
        logger.info(
            "image_generated",
            product_id=str(product_id),
            aspect_ratio=aspect_ratio,
            mime_type=result.mime_type,
            size_bytes=len(result.data),
        )
        return image

    async def _generate_with_retry(self, prompt, aspect_ratio, product) -> ImageResult:
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(RateLimitedError),
            stop=stop_after_attempt(self.max_retries + 1),
            wait=wait_incrementing(start=self.retry_backoff, increment=self.retry_backoff),
            before_sleep=self._log_rate_limited,
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self.generator.generate(prompt, aspect_ratio, product.image)
        raise AssertionError("unreachable")  # pragma: no cover

    @staticmethod
    def _log_rate_limited(retry_state: RetryCallState) -> None:
        metrics.image_rate_limit_retries_total.inc()
        logger.warning(
            "image_generation_rate_limited",
            attempt=retry_state.attempt_number,
            wait_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        )
