"""
OCR сервис — распознавание текста из изображений и PDF.

Пайплайн:
    - Профили OCR (язык, OEM/PSM, параметры Tesseract)
    - Растеризация PDF через pdftoppm (pdf2image)
    - Распознавание: одно изображение напрямую, страницы PDF
      последовательно или через пул движков
    - Сборка результатов строго по номеру страницы
"""

from ocr_service.config import settings
from ocr_service.schemas import (
    DocumentResult,
    ImageDocumentResult,
    OCRProfile,
    PdfDocumentResult,
    RecognitionResult,
)

__all__ = [
    "settings",
    "OCRProfile",
    "RecognitionResult",
    "DocumentResult",
    "ImageDocumentResult",
    "PdfDocumentResult",
]
