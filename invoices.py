import io
import logging
import re
import time
import uuid
from dataclasses import dataclass
from pathlib import PurePath
from typing import Optional, Protocol

import pytesseract
from PIL import Image

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"
PDF_PLACEHOLDER_TEXT = "PDF file (text cannot be extracted automatically)"
OCR_FAILED_TEXT = "Could not process the file with OCR"
DETECTED_BARCODE_MARKER = "--- BARCODE DETECTED ---"
MANUAL_BARCODE_MARKER = "--- BARCODE ENTERED MANUALLY ---"

# Boleto digitable line, either formatted or as 47 bare digits.
BARCODE_PATTERN = re.compile(
    r"(\d{5}[.]\d{5}\s\d{5}[.]\d{6}\s\d{5}[.]\d{6}\s\d{1}\s\d{14})|(\d{47})"
)


class TextExtractor(Protocol):
    def extract(self, content: bytes) -> str: ...


class TesseractTextExtractor:
    def __init__(self, language: str = "por") -> None:
        self.language = language

    def extract(self, content: bytes) -> str:
        with Image.open(io.BytesIO(content)) as image:
            return pytesseract.image_to_string(image, lang=self.language)


@dataclass(frozen=True)
class ProcessedUpload:
    filename: str
    content: bytes
    content_type: Optional[str]
    processed_text: str
    barcode: Optional[str]


def is_allowed_content_type(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    return content_type.startswith("image/") or content_type == PDF_CONTENT_TYPE


def validate_upload(content_type: Optional[str], size: int, max_bytes: int) -> None:
    if not is_allowed_content_type(content_type):
        raise ValueError("Only images and PDFs are allowed")
    if size == 0:
        raise ValueError("Empty file")
    if size > max_bytes:
        raise ValueError(f"File too large (max {max_bytes // (1024 * 1024)}MB)")


def detect_barcode(text: str) -> Optional[str]:
    match = BARCODE_PATTERN.search(text)
    return match.group(0) if match else None


def stored_filename(original_name: str) -> str:
    extension = PurePath(original_name).suffix.lstrip(".") or "bin"
    return f"{uuid.uuid4().hex}.{extension}"


def process_upload(
    content: Optional[bytes],
    original_name: Optional[str],
    content_type: Optional[str],
    barcode: Optional[str],
    extractor: TextExtractor,
) -> ProcessedUpload:
    barcode = (barcode or "").strip() or None

    if content is not None:
        filename = stored_filename(original_name or "")
        if content_type == PDF_CONTENT_TYPE:
            text = PDF_PLACEHOLDER_TEXT
        else:
            try:
                text = extractor.extract(content)
            except Exception:
                logger.exception(f"ocr_failed: filename={original_name}")
                text = OCR_FAILED_TEXT
            if not barcode and text:
                found = detect_barcode(text)
                if found:
                    text += f"\n\n{DETECTED_BARCODE_MARKER}\n{found}"
    elif barcode:
        text = f"Barcode entered manually: {barcode}"
        filename = f"barcode-{int(time.time() * 1000)}.txt"
        content = text.encode("utf-8")
        content_type = "text/plain"
    else:
        raise ValueError("No file or barcode provided")

    if barcode and barcode not in text:
        text += f"\n\n{MANUAL_BARCODE_MARKER}\n{barcode}"

    return ProcessedUpload(
        filename=filename,
        content=content,
        content_type=content_type,
        processed_text=text,
        barcode=barcode,
    )
