"""
Pre-upload validation for OCR files.

Page counts here are estimates from file size and type; the actual count
is only known once the document has been processed.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional

from usage_guard.config.loader import OCRLimits


@dataclass(frozen=True)
class FileInfo:
    """Metadata of an uploaded file."""
    name: str
    size: int  # bytes
    type: str  # MIME type

    def __post_init__(self):
        if self.size < 0:
            raise ValueError("File size cannot be negative")


class Confidence(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class PageEstimate:
    estimated_pages: int
    confidence: Confidence
    method: str


@dataclass(frozen=True)
class FileInspection:
    """Detailed pre-upload result for one file."""
    file: FileInfo
    size_formatted: str
    extension: str
    requires_ocr: bool
    estimated_pages: int
    valid: bool
    error: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class BatchInspection:
    """Pre-upload result for a batch of files."""
    valid: List[FileInspection]
    invalid: List[FileInspection]
    total_size: int
    total_estimated_pages: int
    summary: str


FILE_EXTENSIONS: Dict[str, str] = {
    "application/pdf": "pdf",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/tiff": "tiff",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "text/plain": "txt",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
}

# Accepted for upload but extracted without OCR
TEXT_TYPES = (
    "text/plain",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
)

PDF_BYTES_PER_PAGE = 100_000
HIGH_CONFIDENCE_MAX_BYTES = 500_000
LOW_CONFIDENCE_MIN_BYTES = 5_000_000
LARGE_FILE_BYTES = 2 * 1024 * 1024

SUPPORTED_TYPES_LABEL = "PDF, JPEG, PNG, TIFF, TXT, DOCX"

_SIZE_UNITS = ("B", "KB", "MB", "GB")


def format_file_size(size: int) -> str:
    """Human-readable size in 1024 steps, e.g. ``1.5 MB``."""
    if size <= 0:
        return "0 B"
    exponent = 0
    while size >= 1024 ** (exponent + 1) and exponent < len(_SIZE_UNITS) - 1:
        exponent += 1
    value = f"{size / 1024 ** exponent:.2f}".rstrip("0").rstrip(".")
    return f"{value} {_SIZE_UNITS[exponent]}"


def get_file_extension(filename: str, mime_type: Optional[str] = None) -> str:
    """Extension from the MIME type if known, else from the filename."""
    if mime_type and mime_type in FILE_EXTENSIONS:
        return FILE_EXTENSIONS[mime_type]
    _, dot, suffix = filename.rpartition(".")
    return suffix.lower() if dot else ""


def requires_ocr(mime_type: str, limits: OCRLimits) -> bool:
    return mime_type in limits.supported_image_types or mime_type == "application/pdf"


def estimate_page_count(size: int, mime_type: str) -> PageEstimate:
    """Estimate pages from size and type.

    Images are one page. PDFs assume about 100 KB per page; small files are
    the most predictable.
    """
    if mime_type.startswith("image/"):
        return PageEstimate(1, Confidence.HIGH, "image_single_page")

    if mime_type == "application/pdf":
        estimated = max(1, math.ceil(size / PDF_BYTES_PER_PAGE))
        if size < HIGH_CONFIDENCE_MAX_BYTES:
            confidence = Confidence.HIGH
        elif size > LOW_CONFIDENCE_MIN_BYTES:
            confidence = Confidence.LOW
        else:
            confidence = Confidence.MEDIUM
        return PageEstimate(estimated, confidence, "pdf_size_estimation")

    return PageEstimate(1, Confidence.LOW, "default")


def inspect_file(file: FileInfo, limits: OCRLimits) -> FileInspection:
    """Validate one file before upload and collect warnings.

    Args:
        file: File metadata
        limits: OCR limits to validate against

    Returns:
        FileInspection with ``valid`` set and either an error or warnings
    """
    extension = get_file_extension(file.name, file.type)
    size_formatted = format_file_size(file.size)
    needs_ocr = requires_ocr(file.type, limits)
    estimate = estimate_page_count(file.size, file.type)

    def result(error: Optional[str] = None, warnings: Optional[List[str]] = None) -> FileInspection:
        return FileInspection(
            file=file,
            size_formatted=size_formatted,
            extension=extension,
            requires_ocr=needs_ocr,
            estimated_pages=estimate.estimated_pages,
            valid=error is None,
            error=error,
            warnings=warnings or [],
        )

    if file.size > limits.max_file_size_bytes:
        return result(
            error=f"File size ({size_formatted}) exceeds maximum of {limits.max_file_size_mb}MB."
        )

    if not (limits.is_supported_type(file.type) or file.type in TEXT_TYPES):
        return result(
            error=(
                f'File type "{file.type or extension}" is not supported. '
                f"Supported types: {SUPPORTED_TYPES_LABEL}."
            )
        )

    if estimate.estimated_pages > limits.max_pages_per_document:
        return result(
            error=(
                f"Estimated page count ({estimate.estimated_pages}) exceeds maximum of "
                f"{limits.max_pages_per_document} pages per document."
            )
        )

    warnings = []
    if estimate.confidence is Confidence.LOW:
        warnings.append(
            "Page count estimation may be inaccurate. "
            "Actual count will be determined during processing."
        )
    if needs_ocr and file.size > LARGE_FILE_BYTES:
        warnings.append("Large files may take longer to process with OCR.")
    if file.type == "image/tiff":
        warnings.append("TIFF files may contain multiple pages.")

    return result(warnings=warnings)


def inspect_files(files: Iterable[FileInfo], limits: OCRLimits) -> BatchInspection:
    """Validate a batch upload; totals cover valid files only."""
    valid: List[FileInspection] = []
    invalid: List[FileInspection] = []
    for file in files:
        inspection = inspect_file(file, limits)
        (valid if inspection.valid else invalid).append(inspection)

    total = len(valid) + len(invalid)
    if invalid:
        summary = f"{len(valid)} of {total} files valid. {len(invalid)} rejected."
    else:
        summary = f"All {total} files valid."

    return BatchInspection(
        valid=valid,
        invalid=invalid,
        total_size=sum(item.file.size for item in valid),
        total_estimated_pages=sum(item.estimated_pages for item in valid),
        summary=summary,
    )


def describe_limits(limits: OCRLimits) -> Dict[str, str]:
    return {
        "file_size": f"Maximum {limits.max_file_size_mb}MB per file",
        "pages_per_document": f"Maximum {limits.max_pages_per_document} pages per document",
        "pages_per_session": f"Maximum {limits.max_pages_per_session} pages per session",
        "pages_per_day": f"Maximum {limits.max_pages_per_day} pages per day",
        "documents_per_session": f"Maximum {limits.max_documents_per_session} documents per session",
        "documents_per_day": f"Maximum {limits.max_documents_per_day} documents per day",
        "supported_types": SUPPORTED_TYPES_LABEL,
    }
