"""
Unit tests for pre-upload OCR file validation.
"""

import pytest

from usage_guard.config.loader import OCRLimits
from usage_guard.core.ocr_validation import (
    Confidence,
    FileInfo,
    describe_limits,
    estimate_page_count,
    format_file_size,
    get_file_extension,
    inspect_file,
    inspect_files,
    requires_ocr,
)


LIMITS = OCRLimits()
MB = 1024 * 1024


class TestHelpers:
    """Test size formatting and type helpers."""

    @pytest.mark.parametrize("size,expected", [
        (0, "0 B"),
        (500, "500 B"),
        (1024, "1 KB"),
        (1536, "1.5 KB"),
        (int(1.5 * MB), "1.5 MB"),
        (3 * 1024 * MB, "3 GB"),
    ])
    def test_format_file_size(self, size, expected):
        """Test sizes are formatted in 1024 steps."""
        assert format_file_size(size) == expected

    def test_extension_prefers_mime_type(self):
        """Test known MIME types decide the extension."""
        assert get_file_extension("photo.dat", "image/jpeg") == "jpg"

    def test_extension_from_filename(self):
        """Test unknown MIME types fall back to the filename."""
        assert get_file_extension("Report.PDF", "application/x-unknown") == "pdf"
        assert get_file_extension("README") == ""

    def test_requires_ocr(self):
        """Test only images and PDFs need OCR."""
        assert requires_ocr("application/pdf", LIMITS)
        assert requires_ocr("image/png", LIMITS)
        assert not requires_ocr("text/plain", LIMITS)

    def test_negative_size_rejected(self):
        """Test file sizes cannot be negative."""
        with pytest.raises(ValueError):
            FileInfo(name="x.pdf", size=-1, type="application/pdf")


class TestPageEstimation:
    """Test page count estimates."""

    def test_image_is_one_page(self):
        """Test images are always a single page."""
        estimate = estimate_page_count(4 * MB, "image/png")

        assert estimate.estimated_pages == 1
        assert estimate.confidence is Confidence.HIGH

    @pytest.mark.parametrize("size,pages,confidence", [
        (0, 1, Confidence.HIGH),
        (250_000, 3, Confidence.HIGH),
        (1_000_000, 10, Confidence.MEDIUM),
        (6_000_000, 60, Confidence.LOW),
    ])
    def test_pdf_estimate(self, size, pages, confidence):
        """Test PDFs are estimated at about 100 KB per page."""
        estimate = estimate_page_count(size, "application/pdf")

        assert estimate.estimated_pages == pages
        assert estimate.confidence is confidence

    def test_unknown_type(self):
        """Test other types default to one low-confidence page."""
        estimate = estimate_page_count(10_000, "text/plain")

        assert estimate.estimated_pages == 1
        assert estimate.confidence is Confidence.LOW


class TestInspectFile:
    """Test single-file inspection."""

    def test_valid_pdf(self):
        """Test a small PDF passes without warnings."""
        result = inspect_file(FileInfo("contract.pdf", 250_000, "application/pdf"), LIMITS)

        assert result.valid
        assert result.error is None
        assert result.warnings == []
        assert result.requires_ocr
        assert result.estimated_pages == 3
        assert result.extension == "pdf"
        assert result.size_formatted == "244.14 KB"

    def test_file_too_large(self):
        """Test size is checked first."""
        result = inspect_file(FileInfo("huge.gif", 6 * MB, "image/gif"), LIMITS)

        assert not result.valid
        assert result.error == "File size (6 MB) exceeds maximum of 5MB."

    def test_unsupported_type(self):
        """Test unsupported types are rejected."""
        result = inspect_file(FileInfo("anim.gif", 1000, "image/gif"), LIMITS)

        assert not result.valid
        assert 'File type "image/gif" is not supported' in result.error

    def test_text_files_are_accepted_without_ocr(self):
        """Test plain text uploads are valid but skip OCR."""
        result = inspect_file(FileInfo("notes.txt", 2000, "text/plain"), LIMITS)

        assert result.valid
        assert not result.requires_ocr

    def test_too_many_estimated_pages(self):
        """Test the estimated page count is checked against the document limit."""
        result = inspect_file(FileInfo("book.pdf", 1_200_000, "application/pdf"), LIMITS)

        assert not result.valid
        assert "Estimated page count (12)" in result.error

    def test_large_tiff_warnings(self):
        """Test large OCR files and TIFFs carry warnings."""
        result = inspect_file(FileInfo("scan.tiff", 3 * MB, "image/tiff"), LIMITS)

        assert result.valid
        assert result.warnings == [
            "Large files may take longer to process with OCR.",
            "TIFF files may contain multiple pages.",
        ]


class TestInspectFiles:
    """Test batch inspection."""

    def test_mixed_batch(self):
        """Test totals cover only the valid files."""
        files = [
            FileInfo("a.pdf", 250_000, "application/pdf"),
            FileInfo("b.png", 40_000, "image/png"),
            FileInfo("c.gif", 1000, "image/gif"),
        ]

        batch = inspect_files(files, LIMITS)

        assert len(batch.valid) == 2
        assert len(batch.invalid) == 1
        assert batch.total_size == 290_000
        assert batch.total_estimated_pages == 4
        assert batch.summary == "2 of 3 files valid. 1 rejected."

    def test_all_valid(self):
        """Test the summary for a clean batch."""
        batch = inspect_files([FileInfo("a.pdf", 1000, "application/pdf")], LIMITS)

        assert batch.summary == "All 1 files valid."

    def test_describe_limits(self):
        """Test the limit descriptions reflect the configuration."""
        descriptions = describe_limits(OCRLimits(max_pages_per_day=7))

        assert descriptions["pages_per_day"] == "Maximum 7 pages per day"
        assert descriptions["file_size"] == "Maximum 5MB per file"
