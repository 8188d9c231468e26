import pytest

from invoices import (
    DETECTED_BARCODE_MARKER,
    MANUAL_BARCODE_MARKER,
    OCR_FAILED_TEXT,
    PDF_PLACEHOLDER_TEXT,
    detect_barcode,
    process_upload,
    stored_filename,
    validate_upload,
)

BOLETO = "23790.50400 41990.901504 32008.109202 1 96440000012345"


class StubExtractor:
    def __init__(self, text: str = "", error: Exception = None) -> None:
        self.text = text
        self.error = error
        self.calls = 0

    def extract(self, content: bytes) -> str:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.text


def test_detect_barcode_formatted_and_bare():
    assert detect_barcode(f"Pay before Friday\n{BOLETO}\nthanks") == BOLETO
    digits = "1" * 47
    assert detect_barcode(f"code {digits}") == digits
    assert detect_barcode("no code here 12345") is None


def test_validate_upload_limits():
    validate_upload("image/jpeg", 10, 100)
    validate_upload("application/pdf", 10, 100)
    with pytest.raises(ValueError, match="Only images and PDFs"):
        validate_upload("text/plain", 10, 100)
    with pytest.raises(ValueError, match="Empty file"):
        validate_upload("image/png", 0, 100)


def test_stored_filename_keeps_extension():
    assert stored_filename("scan.JPG").endswith(".JPG")
    assert stored_filename("noext").endswith(".bin")


def test_image_upload_appends_detected_barcode():
    extractor = StubExtractor(f"Electricity bill\n{BOLETO}")
    processed = process_upload(b"img", "bill.png", "image/png", None, extractor)
    assert processed.processed_text.endswith(f"{DETECTED_BARCODE_MARKER}\n{BOLETO}")
    assert processed.content == b"img"
    assert processed.barcode is None


def test_pdf_upload_skips_ocr():
    extractor = StubExtractor("never used")
    processed = process_upload(b"%PDF", "bill.pdf", "application/pdf", None, extractor)
    assert processed.processed_text == PDF_PLACEHOLDER_TEXT
    assert extractor.calls == 0
    assert processed.filename.endswith(".pdf")


def test_ocr_failure_is_recorded_not_raised():
    extractor = StubExtractor(error=RuntimeError("tesseract missing"))
    processed = process_upload(b"img", "bill.png", "image/png", None, extractor)
    assert processed.processed_text == OCR_FAILED_TEXT


def test_manual_barcode_is_appended_once():
    extractor = StubExtractor("Water bill")
    processed = process_upload(b"img", "bill.png", "image/png", f" {BOLETO} ", extractor)
    assert processed.barcode == BOLETO
    assert processed.processed_text == f"Water bill\n\n{MANUAL_BARCODE_MARKER}\n{BOLETO}"


def test_barcode_only_upload_stores_text_file():
    processed = process_upload(None, None, None, BOLETO, None)
    assert processed.content_type == "text/plain"
    assert processed.filename.startswith("barcode-")
    assert processed.filename.endswith(".txt")
    assert processed.processed_text == f"Barcode entered manually: {BOLETO}"
    assert processed.content == processed.processed_text.encode("utf-8")


def test_upload_without_file_or_barcode_fails():
    with pytest.raises(ValueError, match="No file or barcode provided"):
        process_upload(None, None, None, "  ", None)
