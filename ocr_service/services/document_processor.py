"""
Оркестратор обработки документа.

Состояния запроса:
    received -> (PDF: rasterizing ->) strategy_selected -> recognizing
             -> assembling -> done | failed

Изображение распознаётся напрямую одним экземпляром движка.
PDF растеризуется, затем страницы распознаются:
    - через пул движков, если страниц больше 2 и CPU больше 1
    - иначе последовательно, по одной странице
Результаты страниц собираются строго по номеру страницы.
"""

import logging
import os
import time
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from ocr_service.config import settings
from ocr_service.exceptions import EmptyDocumentError
from ocr_service.schemas import (
    DocumentResult,
    ImageDocumentResult,
    OCRProfile,
    PageImage,
    PageResult,
    PdfDocumentResult,
    PdfOptions,
    RecognitionJob,
    Strategy,
    StrategyKind,
)
from ocr_service.services.classifier import detect_document_type
from ocr_service.services.engine import EngineFactory, recognize_image
from ocr_service.services.file_handler import remove_file, remove_files
from ocr_service.services.profiles import resolve_profile
from ocr_service.services.rasterizer import new_job_id, rasterize
from ocr_service.services.worker_pool import run_pooled

logger = logging.getLogger(__name__)

# Имя профиля, включающее автоопределение типа документа
AUTO_PROFILE = "auto"

PDF_SIGNATURE = b"%PDF"


class PipelineStage(str, Enum):
    RECEIVED = "received"
    RASTERIZING = "rasterizing"
    STRATEGY_SELECTED = "strategy_selected"
    RECOGNIZING = "recognizing"
    ASSEMBLING = "assembling"
    DONE = "done"
    FAILED = "failed"


def available_parallelism() -> int:
    return os.cpu_count() or 1


def pool_width(cpu_count: int) -> int:
    """Ширина пула: min(max_pool_workers, CPU - 1), но не меньше 1."""
    return max(1, min(settings.max_pool_workers, cpu_count - 1))


def select_strategy(page_count: int, cpu_count: int) -> Strategy:
    """
    Выбирает стратегию распознавания страниц.

    Args:
        page_count: количество страниц
        cpu_count: доступный параллелизм

    Returns:
        Strategy: POOLED(ширина) при page_count > 2 и cpu_count > 1,
            иначе SEQUENTIAL
    """
    if page_count > 2 and cpu_count > 1:
        width = min(pool_width(cpu_count), page_count)
        return Strategy(kind=StrategyKind.POOLED, width=width)
    return Strategy(kind=StrategyKind.SEQUENTIAL, width=1)


def mean_confidence(pages: Sequence[PageResult]) -> float:
    """
    Средняя уверенность по страницам.

    Raises:
        EmptyDocumentError: для пустого набора страниц
    """
    if not pages:
        raise EmptyDocumentError("Нет страниц для расчёта средней уверенности")
    return sum(page.confidence for page in pages) / len(pages)


def is_pdf(file_path: str) -> bool:
    """PDF определяется по расширению или по сигнатуре %PDF."""
    path = Path(file_path)
    if path.suffix.lower() == ".pdf":
        return True
    with path.open("rb") as f:
        return f.read(len(PDF_SIGNATURE)) == PDF_SIGNATURE


class DocumentPipeline:
    """
    Обработка одного документа.

    Экземпляр используется для одного запроса: хранит текущий этап,
    job_id и фабрику движков.

    Args:
        file_path: путь к изображению или PDF
        profile_name: имя профиля, "auto" или None (профиль по умолчанию)
        engine_factory: фабрика экземпляров движка
        cpu_count: доступный параллелизм (по умолчанию os.cpu_count())
        scratch_dir: папка для страниц PDF
    """

    def __init__(
        self,
        file_path: str,
        profile_name: Optional[str] = None,
        engine_factory: Optional[EngineFactory] = None,
        cpu_count: Optional[int] = None,
        scratch_dir: Optional[str] = None,
    ):
        self.file_path = str(file_path)
        self.profile_name = profile_name or settings.default_profile
        self.engine_factory = engine_factory
        self.cpu_count = cpu_count or available_parallelism()
        self.scratch_dir = scratch_dir
        self.job_id = new_job_id()
        self.stage = PipelineStage.RECEIVED
        self.strategy: Optional[Strategy] = None

    def _advance(self, stage: PipelineStage) -> None:
        logger.debug(f"   [{self.job_id}] {self.stage.value} -> {stage.value}")
        self.stage = stage

    @property
    def auto_detect(self) -> bool:
        return self.profile_name == AUTO_PROFILE

    async def run(self) -> DocumentResult:
        """
        Выполняет обработку документа.

        Returns:
            DocumentResult: ImageDocumentResult или PdfDocumentResult

        Raises:
            RasterizationError, RecognitionError, PoolBatchError,
            EmptyDocumentError: структурные ошибки обработки
        """
        start = time.perf_counter()
        logger.info("=" * 60)
        logger.info("НОВЫЙ ЗАПРОС OCR")
        logger.info(f"   Файл: {Path(self.file_path).name}")
        logger.info(f"   Профиль: {self.profile_name}")
        logger.info(f"   job_id: {self.job_id}")
        logger.info("=" * 60)

        try:
            if is_pdf(self.file_path):
                result = await self._process_pdf()
            else:
                result = await self._process_image()
        except Exception as e:
            logger.error(f"Ошибка обработки документа на этапе {self.stage.value}: {e}")
            self._advance(PipelineStage.FAILED)
            raise

        self._advance(PipelineStage.DONE)
        duration = int((time.perf_counter() - start) * 1000)
        logger.info(f"ОБРАБОТКА ЗАВЕРШЕНА за {duration}ms")
        return result

    async def _resolve(self, sample_path: str) -> OCRProfile:
        if self.auto_detect:
            return resolve_profile(
                await detect_document_type(sample_path, self.engine_factory)
            )
        return resolve_profile(self.profile_name)

    async def _process_image(self) -> ImageDocumentResult:
        profile = await self._resolve(self.file_path)

        self._advance(PipelineStage.STRATEGY_SELECTED)
        self._advance(PipelineStage.RECOGNIZING)
        result = await recognize_image(self.file_path, profile, self.engine_factory)

        self._advance(PipelineStage.ASSEMBLING)
        logger.info(
            f"   OCR: {len(result.text)} симв., уверенность {result.confidence:.0f}%"
        )
        return ImageDocumentResult(result=result, profile=profile.name)

    async def _process_pdf(self) -> PdfDocumentResult:
        # Подсказки растеризации берутся из профиля; при автоопределении
        # профиль ещё неизвестен, поэтому используются значения по умолчанию
        options = None
        if not self.auto_detect:
            options = resolve_profile(self.profile_name).pdf_options
        options = options or PdfOptions(resolution=settings.pdf_default_dpi)

        images = await self._rasterize(options)

        try:
            profile = await self._resolve(images[0].path)
            if profile.pdf_options and profile.pdf_options != options:
                # Определённый профиль задаёт свои подсказки: страницы пересоздаются
                logger.info(
                    f"   Повторная растеризация для профиля {profile.name}: "
                    f"{profile.pdf_options.resolution} dpi"
                )
                remove_files(image.path for image in images)
                images = []
                images = await self._rasterize(profile.pdf_options)

            jobs = [
                RecognitionJob(
                    job_id=self.job_id,
                    page_number=image.page_number,
                    image_path=image.path,
                    profile=profile,
                )
                for image in images
            ]

            self.strategy = select_strategy(len(jobs), self.cpu_count)
            self._advance(PipelineStage.STRATEGY_SELECTED)
            logger.info(
                f"   Стратегия: {self.strategy.kind.value}, "
                f"движков {self.strategy.width}, страниц {len(jobs)}"
            )

            self._advance(PipelineStage.RECOGNIZING)
            if self.strategy.kind is StrategyKind.POOLED:
                pages = await run_pooled(
                    jobs, profile, self.strategy.width, self.engine_factory
                )
            else:
                pages = await self._recognize_sequential(jobs)
        finally:
            # Остатки страниц (при ошибке или после автоопределения)
            remove_files(image.path for image in images)

        self._advance(PipelineStage.ASSEMBLING)
        pages = sorted(pages, key=lambda page: page.page_number)
        average = mean_confidence(pages)
        logger.info(f"   Страниц: {len(pages)}, средняя уверенность: {average:.1f}%")

        return PdfDocumentResult(
            pages=tuple(pages),
            total_pages=len(pages),
            average_confidence=average,
            profile=profile.name,
        )

    async def _rasterize(self, options: PdfOptions) -> list[PageImage]:
        self._advance(PipelineStage.RASTERIZING)
        return await rasterize(
            self.file_path,
            resolution=options.resolution,
            grayscale=options.grayscale,
            job_id=self.job_id,
            scratch_dir=self.scratch_dir,
        )

    async def _recognize_sequential(
        self, jobs: Sequence[RecognitionJob]
    ) -> list[PageResult]:
        pages = []
        for job in jobs:
            try:
                result = await recognize_image(
                    job.image_path,
                    job.profile,
                    self.engine_factory,
                    page_number=job.page_number,
                )
            finally:
                remove_file(job.image_path)

            logger.info(
                f"        стр.{job.page_number}: {len(result.text)} симв., "
                f"уверенность {result.confidence:.0f}%"
            )
            pages.append(PageResult(page_number=job.page_number, result=result))
        return pages


async def process_document(
    file_path: str,
    profile_name: Optional[str] = None,
    *,
    engine_factory: Optional[EngineFactory] = None,
    cpu_count: Optional[int] = None,
    scratch_dir: Optional[str] = None,
) -> DocumentResult:
    """
    Основная функция обработки документа.

    Args:
        file_path: путь к изображению (JPEG, PNG, TIFF, BMP) или PDF
        profile_name: имя профиля или "auto"
        engine_factory: фабрика экземпляров движка
        cpu_count: доступный параллелизм
        scratch_dir: папка для страниц PDF

    Returns:
        DocumentResult: результат обработки
    """
    pipeline = DocumentPipeline(
        file_path,
        profile_name,
        engine_factory=engine_factory,
        cpu_count=cpu_count,
        scratch_dir=scratch_dir,
    )
    return await pipeline.run()
