from __future__ import annotations

from pathlib import Path
from typing import Iterable, List

import pytesseract
from pdf2image import convert_from_path
from PIL import Image
from pytesseract import Output

from exam_pipeline.utils.logging_config import get_logger
from exam_pipeline.utils.types import ExamDocument, OCRPageResult, join_texts

logger = get_logger(__name__)

TEXT_SUFFIXES = {".txt", ".md"}


def _basic_cleanup(text: str) -> str:
    return text.replace("\x0c", "").strip()


def _extract_confidence(image: Image.Image, lang: str) -> float:
    data = pytesseract.image_to_data(image, lang=lang, output_type=Output.DICT)
    confidences = [float(value) for value in data.get("conf", []) if str(value) not in ("-1", "-2")]
    if not confidences:
        return 0.0
    return round(sum(confidences) / len(confidences), 2)


def ocr_images(images: Iterable[Image.Image], lang: str = "eng") -> List[OCRPageResult]:
    pages: List[OCRPageResult] = []
    for index, image in enumerate(images, start=1):
        raw_text = pytesseract.image_to_string(image, lang=lang)
        pages.append(OCRPageResult(page=index, raw_text=raw_text, cleaned_text=_basic_cleanup(raw_text), confidence=_extract_confidence(image, lang)))
    return pages


def ocr_pdf(path: Path, *, dpi: int = 300, lang: str = "eng") -> List[OCRPageResult]:
    images = convert_from_path(str(path), dpi=dpi)
    pages = ocr_images(images, lang=lang)
    logger.info("OCR finished | file=%s pages=%s dpi=%s", path.name, len(pages), dpi)
    return pages


def read_document_text(document: ExamDocument, *, dpi: int = 300, lang: str = "eng") -> str:
    """Return the document's text, running OCR for PDFs and images."""
    if document.text is not None:
        return document.text
    if document.path is None:
        raise ValueError(f"Document {document.name!r} has neither text nor a path.")
    path = Path(document.path)
    if not path.exists():
        raise FileNotFoundError(f"Document not found: {path}")
    suffix = path.suffix.lower()
    if suffix in TEXT_SUFFIXES:
        return path.read_text(encoding="utf-8")
    if suffix == ".pdf":
        return join_texts(ocr_pdf(path, dpi=dpi, lang=lang))
    with Image.open(path) as image:
        return join_texts(ocr_images([image], lang=lang))


__all__ = ["ocr_images", "ocr_pdf", "read_document_text"]
