"""
Completion Service - Text and image generation over the Gemini API.

The orchestrator depends on the CompletionService and ImageGenerator
protocols only; the Gemini classes are the production adapters.

A text stream is zero or more CompletionChunk events followed by exactly
one terminal event: CompletionFinished with the concatenated text, or
CompletionFailed.
"""

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Protocol

from google import genai
from google.genai import errors as genai_errors
from google.genai import types
from structlog import get_logger

from launch_studio.exceptions import RateLimitedError, UpstreamGenerationError
from launch_studio.models.domain import ReferenceImage

logger = get_logger(__name__)

# HTTP codes from the provider that are worth a manual retry
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})


@dataclass(frozen=True)
class CompletionRequest:
    """One prompt: system instruction, user context, optional reference image."""

    system_instruction: str
    context: str
    image: ReferenceImage | None = None


@dataclass(frozen=True)
class CompletionChunk:
    """Incremental text, in order."""

    text: str


@dataclass(frozen=True)
class CompletionFinished:
    """Terminal success with the full text."""

    text: str


@dataclass(frozen=True)
class CompletionFailed:
    """Terminal failure."""

    message: str
    retryable: bool = True


CompletionEvent = CompletionChunk | CompletionFinished | CompletionFailed


@dataclass(frozen=True)
class ImageResult:
    """Raw generated image bytes."""

    data: bytes
    mime_type: str


class CompletionService(Protocol):
    """Text generation capability consumed by the pipeline."""

    def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        """Stream a completion; always ends with exactly one terminal event."""
        ...

    async def complete(self, request: CompletionRequest) -> str:
        """
        Generate the full text in one call.

        Raises:
            UpstreamGenerationError: Provider failure or empty response
        """
        ...


class ImageGenerator(Protocol):
    """Image generation capability consumed by the image studio."""

    async def generate(
        self, prompt: str, aspect_ratio: str, reference: ReferenceImage | None
    ) -> ImageResult:
        """
        Generate one image.

        Raises:
            RateLimitedError: Provider signalled a rate limit
            UpstreamGenerationError: Any other failure
        """
        ...


def build_contents(text: str, image: ReferenceImage | None) -> list[types.Part]:
    """User turn: the text context, followed by the reference image when present."""
    parts = [types.Part.from_text(text=text)]
    if image is not None:
        parts.append(types.Part.from_bytes(data=image.data, mime_type=image.mime_type))
    return parts


class GeminiCompletionService:
    """CompletionService backed by google-genai's async client."""

    def __init__(self, api_key: str, model: str, client: genai.Client | None = None) -> None:
        self.model = model
        self.client = client or genai.Client(api_key=api_key)

    async def stream(self, request: CompletionRequest) -> AsyncIterator[CompletionEvent]:
        collected: list[str] = []
        try:
            response_stream = await self.client.aio.models.generate_content_stream(
                model=self.model,
                contents=build_contents(request.context, request.image),
                config=types.GenerateContentConfig(
                    system_instruction=request.system_instruction,
                ),
            )
            async for chunk in response_stream:
                text = chunk.text
                if text:
                    collected.append(text)
                    yield CompletionChunk(text)
        except genai_errors.APIError as exc:
            logger.warning(
                "completion_stream_failed",
                model=self.model,
                status_code=exc.code,
                error=str(exc),
                chunks_received=len(collected),
            )
            yield CompletionFailed(
                message=f"Completion service error ({exc.code})",
                retryable=exc.code in RETRYABLE_STATUS_CODES,
            )
            return

        full_text = "".join(collected)
        if not full_text.strip():
            logger.warning("completion_stream_empty", model=self.model)
            yield CompletionFailed(message="Completion service returned an empty response")
            return

        yield CompletionFinished(full_text)

    async def complete(self, request: CompletionRequest) -> str:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=build_contents(request.context, request.image),
                config=types.GenerateContentConfig(
                    system_instruction=request.system_instruction,
                ),
            )
        except genai_errors.APIError as exc:
            logger.warning(
                "completion_failed",
                model=self.model,
                status_code=exc.code,
                error=str(exc),
            )
            raise UpstreamGenerationError(
                f"Completion service error ({exc.code})",
                retryable=exc.code in RETRYABLE_STATUS_CODES,
            ) from exc

        text = response.text
        if not text or not text.strip():
            raise UpstreamGenerationError("Completion service returned an empty response")
        return text


class GeminiImageGenerator:
    """ImageGenerator backed by an image-capable Gemini model."""

    def __init__(self, api_key: str, model: str, client: genai.Client | None = None) -> None:
        self.model = model
        self.client = client or genai.Client(api_key=api_key)

    async def generate(
        self, prompt: str, aspect_ratio: str, reference: ReferenceImage | None
    ) -> ImageResult:
        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=build_contents(prompt, reference),
                config=types.GenerateContentConfig(
                    response_modalities=["IMAGE"],
                    image_config=types.ImageConfig(aspect_ratio=aspect_ratio),
                ),
            )
        except genai_errors.APIError as exc:
            if exc.code == 429:
                raise RateLimitedError(f"Image model rate limited: {exc.message}") from exc
            raise UpstreamGenerationError(
                f"Image model error ({exc.code})",
                retryable=exc.code in RETRYABLE_STATUS_CODES,
            ) from exc

        for candidate in response.candidates or []:
            if candidate.content is None:
                continue
            for part in candidate.content.parts or []:
                if part.inline_data is not None and part.inline_data.data:
                    return ImageResult(
                        data=part.inline_data.data,
                        mime_type=part.inline_data.mime_type or "image/png",
                    )

        logger.warning("image_response_without_image", model=self.model)
        raise UpstreamGenerationError("Image model returned no image")
