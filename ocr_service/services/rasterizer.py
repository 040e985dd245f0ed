"""
Растеризация PDF в изображения страниц.

Использует pdf2image (pdftoppm): один запуск процесса на документ,
по файлу PNG на страницу в общей временной папке.

Имена файлов: page-<job_id>-<run>-NNNN-<страница>.png
    - job_id — идентификатор обработки документа
    - run — уникальный токен запуска, поэтому повторная растеризация
      с тем же job_id не смешивается с остатками предыдущей
    - номер страницы разбирается только здесь, дальше по пайплайну
      идут PageImage(page_number, path)
"""

import logging
import re
import time
import uuid
from pathlib import Path
from typing import Optional

from pdf2image import convert_from_path
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)
from starlette.concurrency import run_in_threadpool

from ocr_service.config import settings
from ocr_service.exceptions import RasterizationError
from ocr_service.schemas import PageImage

logger = logging.getLogger(__name__)

IMAGE_FORMAT = "png"

# Номер страницы: последний "-<цифры>" перед расширением
_PAGE_SUFFIX_RE = re.compile(r"-(\d+)\.[A-Za-z0-9]+$")

_PDF2IMAGE_ERRORS = (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
    OSError,
)


def new_job_id() -> str:
    """Уникальный идентификатор обработки: время в наносекундах + случайный хвост."""
    return f"{time.time_ns()}{uuid.uuid4().hex[:6]}"


def parse_page_number(filename: str) -> Optional[int]:
    """
    Извлекает номер страницы из имени файла pdftoppm.

    Args:
        filename: имя файла, например "page-123-ab12cd34-0001-07.png"

    Returns:
        int: номер страницы или None, если суффикса нет
    """
    match = _PAGE_SUFFIX_RE.search(filename)
    return int(match.group(1)) if match else None


def collect_page_images(scratch_dir: Path, prefix: str) -> list[PageImage]:
    """
    Находит файлы страниц с указанным префиксом и сортирует по номеру.

    Сортировка числовая: page-10 идёт после page-9.

    Args:
        scratch_dir: временная папка
        prefix: префикс имён файлов конкретного запуска

    Returns:
        list[PageImage]: страницы в физическом порядке
    """
    pages = []
    for path in scratch_dir.iterdir():
        if not path.name.startswith(prefix) or not path.is_file():
            continue
        page_number = parse_page_number(path.name)
        if page_number is None:
            logger.warning(f"Пропущен файл без номера страницы: {path.name}")
            continue
        pages.append(PageImage(page_number=page_number, path=str(path)))

    pages.sort(key=lambda p: p.page_number)
    return pages


def _rasterize_sync(
    pdf_path: str,
    resolution: int,
    grayscale: bool,
    scratch_dir: Path,
    prefix: str,
) -> list[PageImage]:
    scratch_dir.mkdir(parents=True, exist_ok=True)

    try:
        convert_from_path(
            pdf_path,
            dpi=resolution,
            output_folder=str(scratch_dir),
            output_file=prefix,
            fmt=IMAGE_FORMAT,
            grayscale=grayscale,
            thread_count=1,
            paths_only=True,
            poppler_path=settings.poppler_path,
        )
    except _PDF2IMAGE_ERRORS as e:
        raise RasterizationError(f"Ошибка конвертации PDF в изображения: {e}") from e

    return collect_page_images(scratch_dir, prefix)


async def rasterize(
    pdf_path: str,
    resolution: Optional[int] = None,
    grayscale: bool = False,
    job_id: Optional[str] = None,
    scratch_dir: Optional[str] = None,
) -> list[PageImage]:
    """
    Преобразует PDF в упорядоченный список изображений страниц.

    Args:
        pdf_path: путь к PDF
        resolution: DPI рендеринга (по умолчанию из настроек)
        grayscale: рендерить в оттенках серого
        job_id: идентификатор обработки (создаётся, если не указан)
        scratch_dir: временная папка (по умолчанию из настроек)

    Returns:
        list[PageImage]: страницы, отсортированные по номеру

    Raises:
        RasterizationError: если pdftoppm упал или не создал ни одной страницы
    """
    resolution = resolution or settings.pdf_default_dpi
    job_id = job_id or new_job_id()
    scratch = Path(scratch_dir or settings.scratch_dir)
    prefix = f"page-{job_id}-{uuid.uuid4().hex[:8]}-"

    start = time.perf_counter()
    logger.info(
        f"   Растеризация: {Path(pdf_path).name}, dpi={resolution}, "
        f"grayscale={grayscale}, job={job_id}"
    )

    pages = await run_in_threadpool(
        _rasterize_sync, pdf_path, resolution, grayscale, scratch, prefix
    )

    if not pages:
        raise RasterizationError("Не удалось получить изображения из PDF")

    duration = int((time.perf_counter() - start) * 1000)
    logger.info(f"   Растеризация: {len(pages)} страниц за {duration}ms")
    return pages
