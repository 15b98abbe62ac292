"""
API Routes - Products, pipeline stages and images.

NO DICTIONARIES - All requests/responses use Pydantic models.

Products owned by someone else are reported as not found.
"""

from collections.abc import AsyncIterator
from uuid import UUID

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    Query,
    Response,
    UploadFile,
    status,
)
from fastapi.responses import StreamingResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from launch_studio.api.dependencies import get_current_user, get_image_studio, get_orchestrator
from launch_studio.config import settings
from launch_studio.db.session import get_db
from launch_studio.exceptions import (
    DatabaseError,
    DocumentExtractionError,
    EmptyContentError,
    FileTooLargeError,
    InsufficientCreditsError,
    InvalidFileTypeError,
    MissingContextError,
    ProductNotFoundError,
    StageInProgressError,
    UpstreamGenerationError,
    WriteVerificationError,
)
from launch_studio.models.api import (
    PRODUCT_NAME_MAX_LENGTH,
    GeneratedImageResponse,
    GenerateImageRequest,
    OptimizePromptRequest,
    OptimizePromptResponse,
    PipelineStatusResponse,
    ProductListResponse,
    ProductResponse,
    ProductSummaryResponse,
    Stage,
    StageChunkEvent,
    StageContentRequest,
    StageErrorEvent,
    StageFinishedEvent,
    StageResultResponse,
    StageStatusResponse,
    UpdateProductRequest,
)
from launch_studio.models.domain import (
    GeneratedImage,
    PipelineStatus,
    ProductData,
    ProductPatch,
    SessionUser,
)
from launch_studio.services.content_store import ContentStore
from launch_studio.services.image_generation import ImageStudio
from launch_studio.services.ingestion import IncomingFile, UploadIngestor, UploadLimits
from launch_studio.services.pipeline import (
    PipelineOrchestrator,
    StageChunk,
    StageEvent,
    StageFinished,
    StageRun,
)

logger = get_logger(__name__)

router = APIRouter()

NDJSON_MEDIA_TYPE = "application/x-ndjson"


# ============================================================================
# Response Builders
# ============================================================================


def image_response(image: GeneratedImage) -> GeneratedImageResponse:
    return GeneratedImageResponse(
        data_uri=image.data_uri,
        prompt=image.prompt,
        aspect_ratio=image.aspect_ratio,
        created_at=image.created_at,
    )


def product_response(product: ProductData) -> ProductResponse:
    return ProductResponse(
        id=product.product_id,
        name=product.name,
        raw_text=product.raw_text,
        has_image=product.image is not None,
        image_mime_type=product.image.mime_type if product.image else None,
        market_analysis=product.market_analysis,
        product_page_content=product.product_page_content,
        image_prompts=product.image_prompts,
        ad_copy=product.ad_copy,
        generated_images=[image_response(image) for image in product.generated_images],
        created_at=product.created_at.isoformat(),
        updated_at=product.updated_at.isoformat(),
    )


def pipeline_response(status_: PipelineStatus) -> PipelineStatusResponse:
    return PipelineStatusResponse(
        product_id=status_.product_id,
        stages=[
            StageStatusResponse(
                stage=stage.stage,
                state=stage.state,
                cost=stage.cost,
                missing=list(stage.missing),
            )
            for stage in status_.stages
        ],
        next_stage=status_.next_stage,
        credits=status_.credits,
    )


def stream_event(event: StageEvent) -> BaseModel:
    """Wire form of a stage event."""
    if isinstance(event, StageChunk):
        return StageChunkEvent(text=event.text)
    if isinstance(event, StageFinished):
        return StageFinishedEvent(stage=event.stage, text=event.text)
    return StageErrorEvent(
        stage=event.stage,
        message=event.message,
        retryable=event.retryable,
    )


async def ndjson_events(run: StageRun) -> AsyncIterator[str]:
    """Serialize a stage run as newline-delimited JSON."""
    async for event in run.events():
        yield stream_event(event).model_dump_json() + "\n"


def _not_found() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail="Product not found",
    )


def _storage_failed(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=detail,
    )


async def _read_upload(upload: UploadFile, limit: int) -> IncomingFile:
    # One byte past the limit is enough to detect oversize without reading it all
    data = await upload.read(limit + 1)
    return IncomingFile(
        filename=upload.filename or "upload",
        content_type=upload.content_type,
        data=data,
    )


# ============================================================================
# Products
# ============================================================================


@router.post(
    "/v1/products/upload",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_product(
    document: UploadFile = File(...),
    image: UploadFile | None = File(None),
    project_name: str | None = Form(None, max_length=PRODUCT_NAME_MAX_LENGTH),
    user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    """
    Create a product from a .txt or .pdf document and an optional reference image.
    """
    incoming_document = await _read_upload(document, settings.max_document_bytes)
    incoming_image = None
    if image is not None and image.filename:
        incoming_image = await _read_upload(image, settings.max_image_bytes)

    ingestor = UploadIngestor(
        db,
        UploadLimits(
            max_document_bytes=settings.max_document_bytes,
            max_image_bytes=settings.max_image_bytes,
            max_name_from_first_line=settings.max_name_from_first_line,
        ),
    )

    try:
        product = await ingestor.ingest(
            owner_id=user.user_id,
            document=incoming_document,
            image=incoming_image,
            project_name=project_name,
        )
        return product_response(product)

    except FileTooLargeError as exc:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=str(exc),
        ) from exc

    except InvalidFileTypeError as exc:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=str(exc),
        ) from exc

    except (EmptyContentError, DocumentExtractionError) as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc

    except (WriteVerificationError, DatabaseError) as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save product",
        ) from exc


@router.get("/v1/products", response_model=ProductListResponse)
async def list_products(
    user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProductListResponse:
    """The caller's products, newest first."""
    summaries = await ContentStore(db).list_products(user.user_id)
    return ProductListResponse(
        products=[
            ProductSummaryResponse(
                id=summary.product_id,
                name=summary.name,
                created_at=summary.created_at.isoformat(),
                updated_at=summary.updated_at.isoformat(),
            )
            for summary in summaries
        ]
    )


@router.get("/v1/products/{product_id}", response_model=ProductResponse)
async def get_product(
    product_id: UUID,
    user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    """Full product with every stage output."""
    try:
        product = await ContentStore(db).get_product(product_id, owner_id=user.user_id)
    except ProductNotFoundError as exc:
        raise _not_found() from exc
    return product_response(product)


@router.patch("/v1/products/{product_id}", response_model=ProductResponse)
async def update_product(
    product_id: UUID,
    request: UpdateProductRequest,
    user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> ProductResponse:
    """Partial update; only supplied fields change."""
    try:
        product = await ContentStore(db).update_product(
            product_id, user.user_id, ProductPatch(name=request.name)
        )
    except ProductNotFoundError as exc:
        raise _not_found() from exc
    except DatabaseError as exc:
        raise _storage_failed("Failed to save product") from exc
    return product_response(product)


@router.delete("/v1/products/{product_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_product(
    product_id: UUID,
    user: SessionUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> None:
    """Delete one of the caller's products."""
    try:
        await ContentStore(db).delete_product(product_id, user.user_id)
    except ProductNotFoundError as exc:
        raise _not_found() from exc
    except DatabaseError as exc:
        raise _storage_failed("Failed to delete product") from exc


# ============================================================================
# Pipeline
# ============================================================================


@router.post("/v1/products/{product_id}/stages/{stage}", response_model=None)
async def run_stage(
    product_id: UUID,
    stage: Stage,
    response: Response,
    stream: bool = Query(True, description="Stream NDJSON events instead of waiting"),
    user: SessionUser = Depends(get_current_user),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> StreamingResponse | StageResultResponse:
    """
    Run (or re-run) one pipeline stage.

    Paid stages are charged when the generation starts and are not refunded
    if it fails. With stream=true the body is NDJSON: chunk events followed by
    one finished or error event. The generation keeps running if the client
    disconnects.
    """
    try:
        run = await orchestrator.start_stage(user, product_id, stage)

    except ProductNotFoundError as exc:
        raise _not_found() from exc

    except MissingContextError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Run {', '.join(exc.missing)} first: {stage.value} needs its output",
        ) from exc

    except StageInProgressError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"{stage.value} is already generating for this product",
        ) from exc

    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Insufficient credits. Balance: {exc.balance}, Required: {exc.required}",
        ) from exc

    headers = {}
    if run.credits_remaining is not None:
        headers["X-Credits-Remaining"] = str(run.credits_remaining)

    if stream:
        return StreamingResponse(
            ndjson_events(run),
            media_type=NDJSON_MEDIA_TYPE,
            headers=headers,
        )

    try:
        text = await run.result()
    except UpstreamGenerationError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=exc.message,
        ) from exc

    response.headers.update(headers)
    return StageResultResponse(
        product_id=product_id,
        stage=stage,
        content=text,
        credits_remaining=run.credits_remaining,
    )


@router.put("/v1/products/{product_id}/stages/{stage}", response_model=StageResultResponse)
async def confirm_stage(
    product_id: UUID,
    stage: Stage,
    request: StageContentRequest,
    user: SessionUser = Depends(get_current_user),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> StageResultResponse:
    """
    Save a finished stage output from the client.

    Safe to repeat: saving the same text again leaves the field unchanged.
    """
    try:
        product = await orchestrator.confirm_stage_output(
            user, product_id, stage, request.content
        )
    except ProductNotFoundError as exc:
        raise _not_found() from exc
    except MissingContextError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Run {', '.join(exc.missing)} first: {stage.value} needs its output",
        ) from exc
    except DatabaseError as exc:
        raise _storage_failed(f"Failed to save {stage.value}") from exc

    return StageResultResponse(
        product_id=product_id,
        stage=stage,
        content=product.output_for(stage) or "",
    )


@router.get("/v1/products/{product_id}/pipeline", response_model=PipelineStatusResponse)
async def get_pipeline(
    product_id: UUID,
    user: SessionUser = Depends(get_current_user),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PipelineStatusResponse:
    """Per-stage state and the next runnable stage."""
    try:
        pipeline = await orchestrator.get_pipeline_status(user, product_id)
    except ProductNotFoundError as exc:
        raise _not_found() from exc
    return pipeline_response(pipeline)


# ============================================================================
# Images
# ============================================================================


@router.post(
    "/v1/products/{product_id}/images/optimize-prompt",
    response_model=OptimizePromptResponse,
)
async def optimize_image_prompt(
    product_id: UUID,
    request: OptimizePromptRequest,
    user: SessionUser = Depends(get_current_user),
    studio: ImageStudio = Depends(get_image_studio),
) -> OptimizePromptResponse:
    """Fold the product photo's visual details into an image prompt."""
    try:
        prompt = await studio.optimize_prompt(user, product_id, request.prompt)
    except ProductNotFoundError as exc:
        raise _not_found() from exc
    except InsufficientCreditsError as exc:
        raise HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail="At least one credit is required to optimize prompts",
        ) from exc
    except UpstreamGenerationError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=exc.message,
        ) from exc

    return OptimizePromptResponse(prompt=prompt)


@router.post(
    "/v1/products/{product_id}/images",
    response_model=GeneratedImageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_image(
    product_id: UUID,
    request: GenerateImageRequest,
    user: SessionUser = Depends(get_current_user),
    studio: ImageStudio = Depends(get_image_studio),
) -> GeneratedImageResponse:
    """Generate one image and add it to the product's history."""
    try:
        image = await studio.generate_image(
            user, product_id, request.prompt, request.aspect_ratio
        )
    except ProductNotFoundError as exc:
        raise _not_found() from exc
    except UpstreamGenerationError as exc:
        logger.warning(
            "image_generation_failed",
            product_id=str(product_id),
            error=exc.message,
        )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=exc.message,
        ) from exc
    except DatabaseError as exc:
        raise _storage_failed("Image generated but could not be saved") from exc

    return image_response(image)
