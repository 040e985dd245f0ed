"""
OCR сервис — FastAPI приложение.

Принимает изображение или PDF, передаёт его оркестратору
и возвращает распознанный текст.

Эндпоинты:
    POST /ocr      — загрузка документа и распознавание текста
    GET  /health   — проверка работоспособности (Tesseract + CPU)
    GET  /profiles — доступные профили OCR

Запуск:
    uvicorn ocr_service.main:app --host 0.0.0.0 --port 3000
"""

import json
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, File, Form, UploadFile
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from ocr_service.config import settings
from ocr_service.schemas import ErrorResponse, OCRResponse, to_response_data
from ocr_service.services.document_processor import AUTO_PROFILE, process_document
from ocr_service.services.engine import check_tesseract_installation
from ocr_service.services.file_handler import ensure_directories, remove_file, save_upload
from ocr_service.services.profiles import registry

# Настройка логгера
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [OCR-Service] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)

SERVICE_NAME = "ocr-service"

ALLOWED_CONTENT_TYPES = {
    "image/jpeg",
    "image/png",
    "image/tiff",
    "image/bmp",
    "application/pdf",
}


class UnicodeJSONResponse(JSONResponse):
    """JSON ответ без \\uXXXX экранирования не-ASCII символов."""

    def render(self, content) -> bytes:
        return json.dumps(
            content,
            ensure_ascii=False,
            allow_nan=False,
            indent=None,
            separators=(",", ":"),
        ).encode("utf-8")


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_directories()

    version = await check_tesseract_installation()
    if version:
        logger.info(f"Tesseract найден: {version}")
    else:
        logger.error("Tesseract недоступен — распознавание работать не будет")

    yield


# FastAPI приложение
app = FastAPI(
    title="OCR Service",
    description="Распознавание текста из изображений и PDF (Tesseract OCR)",
    version="1.0.0",
    default_response_class=UnicodeJSONResponse,
    lifespan=lifespan,
)


def _error_response(
    status_code: int,
    error: str,
    message: Optional[str] = None,
) -> UnicodeJSONResponse:
    payload = ErrorResponse(error=error, message=message)
    return UnicodeJSONResponse(
        status_code=status_code,
        content=payload.model_dump(exclude_none=True),
    )


@app.get("/health")
async def health_check() -> dict:
    """
    Проверка работоспособности сервиса.

    Returns:
        dict: статус, время, доступность Tesseract
    """
    version = await check_tesseract_installation()

    return {
        "status": "OK" if version else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
        "cpu_count": os.cpu_count(),
        "tesseract": {
            "available": version is not None,
            "version": version,
        },
    }


@app.get("/profiles")
async def list_profiles() -> dict:
    """Профили OCR и их основные параметры."""
    return {
        "default": registry.default.name,
        "auto": AUTO_PROFILE,
        "profiles": [
            {
                "name": profile.name,
                "languages": list(profile.languages),
                "engine_mode": profile.engine_mode,
                "page_seg_mode": profile.page_seg_mode,
            }
            for profile in (registry.resolve(name) for name in registry.names())
        ],
    }


@app.post(
    "/ocr",
    response_model=OCRResponse,
    responses={
        400: {"model": ErrorResponse},
        413: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def execute_ocr(
    file: Optional[UploadFile] = File(
        default=None,
        description="Изображение (JPEG, PNG, TIFF, BMP) или PDF",
    ),
    profile: Optional[str] = Form(
        default=None,
        description='Имя профиля OCR или "auto" для автоопределения',
    ),
):
    """
    Распознаёт текст в загруженном документе.

    Args:
        file: документ (multipart/form-data)
        profile: имя профиля; неизвестное имя — профиль по умолчанию

    Returns:
        OCRResponse: {success, data} или ErrorResponse при ошибке
    """
    if file is None:
        return _error_response(400, "Файл не передан")

    if file.content_type not in ALLOWED_CONTENT_TYPES:
        return _error_response(
            400,
            "Тип файла не поддерживается. Допустимые форматы: JPEG, PNG, TIFF, BMP, PDF",
            f"Получен: {file.content_type}",
        )

    content = await file.read()
    max_size = settings.max_file_size_mb * 1024 * 1024
    if len(content) > max_size:
        return _error_response(
            413,
            "Файл слишком большой",
            f"{len(content)} байт, максимум: {settings.max_file_size_mb} МБ",
        )

    upload_path = await run_in_threadpool(save_upload, content, file.filename or "")
    logger.info(f"Получен файл: {file.filename}, {len(content)} байт, профиль: {profile}")

    try:
        document = await process_document(str(upload_path), profile)
    except Exception as e:
        logger.exception(f"Ошибка OCR обработки: {e}")
        return _error_response(500, "Ошибка обработки документа", str(e))
    finally:
        remove_file(str(upload_path))

    return OCRResponse(data=to_response_data(document))


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Запуск OCR сервиса на {settings.host}:{settings.port}")
    logger.info(f"CPU ядер: {os.cpu_count()}")

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level="info",
    )
