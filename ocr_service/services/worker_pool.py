"""
Пул движков для пакетного распознавания страниц.

Пул живёт ровно один пакет (страницы одного документа):
    1. Старт: W экземпляров движка создаются и настраиваются один раз
       под профиль пакета
    2. Каждая страница берёт следующий свободный движок из очереди
    3. Ожидаются все страницы; результат упорядочен по номеру страницы
    4. Остановка: каждый движок освобождается ровно один раз,
       и при успехе, и при ошибке

Ошибка любой страницы — ошибка всего пакета, частичных результатов нет.
"""

import asyncio
import logging
import time
from typing import Optional, Sequence

from ocr_service.exceptions import PoolBatchError
from ocr_service.schemas import OCRProfile, PageResult, RecognitionJob
from ocr_service.services.engine import (
    EngineFactory,
    RecognitionEngine,
    TesseractEngine,
    configure_engine,
    release_engine,
)
from ocr_service.services.file_handler import remove_file

logger = logging.getLogger(__name__)


class EnginePool:
    """
    Пул из size экземпляров движка, настроенных под один профиль.

    Использование:
        async with EnginePool(profile, size=3) as pool:
            pages = await pool.run_batch(jobs)

    Args:
        profile: профиль всех задач пакета
        size: количество экземпляров движка
        engine_factory: фабрика экземпляров (по умолчанию TesseractEngine)
    """

    def __init__(
        self,
        profile: OCRProfile,
        size: int,
        engine_factory: Optional[EngineFactory] = None,
    ):
        if size < 1:
            raise ValueError("Размер пула должен быть не меньше 1")

        self.profile = profile
        self.size = size
        self._factory = engine_factory or TesseractEngine
        self._engines: list[RecognitionEngine] = []
        self._idle: asyncio.Queue = asyncio.Queue()
        self._started = False
        self._closed = False

    async def start(self) -> None:
        """
        Создаёт и настраивает все экземпляры движка.

        Если настройка любого экземпляра не удалась, уже созданные
        освобождаются до проброса ошибки.
        """
        if self._started:
            raise RuntimeError("Пул уже запущен: пул не переиспользуется между пакетами")
        self._started = True

        try:
            for _ in range(self.size):
                engine = self._factory()
                self._engines.append(engine)
                await configure_engine(engine, self.profile)
                self._idle.put_nowait(engine)
        except BaseException:
            await self.close()
            raise

        logger.info(f"   Пул: {self.size} движков, профиль {self.profile.name}")

    async def close(self) -> None:
        """Освобождает все экземпляры. Повторный вызов ничего не делает."""
        if self._closed:
            return
        self._closed = True

        for engine in self._engines:
            await release_engine(engine)
        logger.debug(f"   Пул остановлен: освобождено {len(self._engines)} движков")

    async def __aenter__(self) -> "EnginePool":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def run_batch(self, jobs: Sequence[RecognitionJob]) -> list[PageResult]:
        """
        Распознаёт все страницы пакета.

        Args:
            jobs: задачи пакета (профиль каждой должен совпадать с профилем пула)

        Returns:
            list[PageResult]: результаты, отсортированные по номеру страницы

        Raises:
            PoolBatchError: если не удалось распознать хотя бы одну страницу
            ValueError: если профиль задачи не совпадает с профилем пула
        """
        if not self._started or self._closed:
            raise RuntimeError("Пул не запущен")

        for job in jobs:
            if job.profile != self.profile:
                raise ValueError(
                    f"Страница {job.page_number}: профиль {job.profile.name} "
                    f"не совпадает с профилем пула {self.profile.name}"
                )

        outcomes = await asyncio.gather(
            *(self._run_job(job) for job in jobs),
            return_exceptions=True,
        )

        failures = [
            (job, outcome)
            for job, outcome in zip(jobs, outcomes)
            if isinstance(outcome, BaseException)
        ]
        if failures:
            failed_pages = sorted(job.page_number for job, _ in failures)
            first_error = failures[0][1]
            raise PoolBatchError(
                f"Не удалось распознать страницы {failed_pages}: {first_error}",
                failed_pages=failed_pages,
            ) from first_error

        return sorted(outcomes, key=lambda page: page.page_number)

    async def _run_job(self, job: RecognitionJob) -> PageResult:
        engine = await self._idle.get()
        start = time.perf_counter()
        try:
            result = await engine.recognize(job.image_path)
        finally:
            self._idle.put_nowait(engine)
            remove_file(job.image_path)

        duration = int((time.perf_counter() - start) * 1000)
        logger.info(
            f"        стр.{job.page_number}: {len(result.text)} симв., "
            f"уверенность {result.confidence:.0f}%, {duration}ms"
        )
        return PageResult(page_number=job.page_number, result=result)


async def run_pooled(
    jobs: Sequence[RecognitionJob],
    profile: OCRProfile,
    width: int,
    engine_factory: Optional[EngineFactory] = None,
) -> list[PageResult]:
    """
    Обрабатывает пакет на отдельном пуле, который останавливается после пакета.

    Ширина пула не превышает количества задач.
    """
    size = max(1, min(width, len(jobs)))
    async with EnginePool(profile, size, engine_factory) as pool:
        return await pool.run_batch(jobs)
