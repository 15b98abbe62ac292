"""
Upload Ingestor - Turns an uploaded document (and optional image) into a Product.

Validation happens before anything is written: a rejected upload never
produces a product row.
"""

import asyncio
import io
import os
from dataclasses import dataclass
from uuid import UUID

import pdfplumber
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from launch_studio.exceptions import (
    DocumentExtractionError,
    EmptyContentError,
    FileTooLargeError,
    InvalidFileTypeError,
    UploadError,
)
from launch_studio.models.api import PRODUCT_NAME_MAX_LENGTH
from launch_studio.models.domain import ProductData, ReferenceImage
from launch_studio.observability.metrics import metrics
from launch_studio.services.content_store import ContentStore

logger = get_logger(__name__)

# Extension -> document kind
DOCUMENT_EXTENSIONS: dict[str, str] = {".txt": "text", ".pdf": "pdf"}
DOCUMENT_MIME_TYPES: dict[str, str] = {"text/plain": "text", "application/pdf": "pdf"}

IMAGE_EXTENSIONS: dict[str, str] = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".webp": "image/webp",
}
IMAGE_MIME_TYPES = frozenset({"image/png", "image/jpeg", "image/webp"})


@dataclass(frozen=True)
class IncomingFile:
    """One uploaded file, already read into memory."""

    filename: str
    content_type: str | None
    data: bytes


@dataclass(frozen=True)
class UploadLimits:
    """Per-file size ceilings."""

    max_document_bytes: int
    max_image_bytes: int
    max_name_from_first_line: int = 50


def _extension(filename: str) -> str:
    return os.path.splitext(filename)[1].lower()


def document_kind(upload: IncomingFile) -> str:
    """
    Classify a document as text or pdf by extension, falling back to MIME type.

    Raises:
        InvalidFileTypeError: Neither extension nor MIME type is supported
    """
    kind = DOCUMENT_EXTENSIONS.get(_extension(upload.filename))
    if kind is None and upload.content_type:
        kind = DOCUMENT_MIME_TYPES.get(upload.content_type.split(";")[0].strip().lower())
    if kind is None:
        raise InvalidFileTypeError(upload.filename, sorted(DOCUMENT_EXTENSIONS))
    return kind


def image_mime_type(upload: IncomingFile) -> str:
    """
    Resolve the MIME type of a reference image.

    Raises:
        InvalidFileTypeError: Not png, jpeg or webp
    """
    content_type = (upload.content_type or "").split(";")[0].strip().lower()
    if content_type in IMAGE_MIME_TYPES:
        return content_type
    mime_type = IMAGE_EXTENSIONS.get(_extension(upload.filename))
    if mime_type is None:
        raise InvalidFileTypeError(upload.filename, sorted(IMAGE_EXTENSIONS))
    return mime_type


def decode_text(data: bytes) -> str:
    """Decode UTF-8 (BOM tolerant), falling back to Latin-1."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError:
        return data.decode("latin-1")


def extract_pdf_text(data: bytes) -> str:
    """Concatenate the text of every page. Blocking; run in a worker thread."""
    with pdfplumber.open(io.BytesIO(data)) as pdf:
        return "\n".join(page.extract_text() or "" for page in pdf.pages)


def derive_product_name(
    explicit: str | None, text: str, filename: str, max_len: int = 50
) -> str:
    """
    Pick a display name.

    Priority: explicit name, then the first line of the text when it is
    short enough, then the filename without its document extension.
    NUL characters are dropped and the result never exceeds
    PRODUCT_NAME_MAX_LENGTH.
    """
    name = _pick_name(explicit, text, filename, max_len).replace("\x00", "")
    return name[:PRODUCT_NAME_MAX_LENGTH] or "Untitled product"


def _pick_name(explicit: str | None, text: str, filename: str, max_len: int) -> str:
    if explicit and explicit.strip():
        return explicit.strip()

    first_line = text.strip().split("\n", 1)[0].strip()
    if 0 < len(first_line) < max_len:
        return first_line

    stem, ext = os.path.splitext(filename)
    if ext.lower() in DOCUMENT_EXTENSIONS:
        return stem or filename
    return filename


class UploadIngestor:
    """Validates uploads and creates products from them."""

    def __init__(self, session: AsyncSession, limits: UploadLimits) -> None:
        self.session = session
        self.limits = limits

    async def ingest(
        self,
        owner_id: UUID,
        document: IncomingFile,
        image: IncomingFile | None = None,
        project_name: str | None = None,
    ) -> ProductData:
        """
        Create a product from an uploaded document and optional image.

        Raises:
            FileTooLargeError: A file exceeds its ceiling
            InvalidFileTypeError: Unsupported document or image type
            DocumentExtractionError: PDF could not be parsed
            EmptyContentError: Document has no readable text
        """
        try:
            raw_text = await self._read_document(document)
            reference = self._read_image(image) if image is not None else None
        except UploadError as exc:
            metrics.record_upload(type(exc).__name__)
            logger.info(
                "upload_rejected",
                user_id=str(owner_id),
                filename=getattr(exc, "filename", None),
                reason=str(exc),
            )
            raise

        name = derive_product_name(
            project_name, raw_text, document.filename, self.limits.max_name_from_first_line
        )
        product = await ContentStore(self.session).create_product(
            owner_id=owner_id, name=name, raw_text=raw_text, image=reference
        )
        metrics.record_upload("accepted")
        logger.info(
            "upload_ingested",
            user_id=str(owner_id),
            product_id=str(product.product_id),
            document_bytes=len(document.data),
            has_image=reference is not None,
        )
        return product

    async def _read_document(self, document: IncomingFile) -> str:
        if len(document.data) > self.limits.max_document_bytes:
            raise FileTooLargeError(document.filename, self.limits.max_document_bytes)

        kind = document_kind(document)
        if kind == "pdf":
            try:
                text = await asyncio.to_thread(extract_pdf_text, document.data)
            except Exception as exc:
                raise DocumentExtractionError(document.filename, str(exc)) from exc
        else:
            text = decode_text(document.data)

        # PostgreSQL TEXT cannot store NUL
        text = text.replace("\x00", "").strip()
        if not text:
            raise EmptyContentError(document.filename)
        return text

    def _read_image(self, image: IncomingFile) -> ReferenceImage:
        if len(image.data) > self.limits.max_image_bytes:
            raise FileTooLargeError(image.filename, self.limits.max_image_bytes)
        return ReferenceImage.from_bytes(image.data, image_mime_type(image))
