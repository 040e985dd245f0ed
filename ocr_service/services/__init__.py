"""
Сервисы OCR обработки.

Модули:
    - profiles: реестр профилей OCR
    - engine: экземпляр движка Tesseract и распознавание изображения
    - rasterizer: разбиение PDF на изображения страниц
    - worker_pool: пул движков для пакета страниц
    - classifier: определение типа документа
    - document_processor: оркестратор обработки документа
    - file_handler: временные файлы и загрузки
"""

from ocr_service.services.classifier import classify_text, detect_document_type
from ocr_service.services.document_processor import process_document, select_strategy
from ocr_service.services.engine import recognize_image
from ocr_service.services.profiles import registry, resolve_profile
from ocr_service.services.rasterizer import rasterize
from ocr_service.services.worker_pool import EnginePool, run_pooled

__all__ = [
    "process_document",
    "select_strategy",
    "recognize_image",
    "rasterize",
    "EnginePool",
    "run_pooled",
    "classify_text",
    "detect_document_type",
    "registry",
    "resolve_profile",
]
