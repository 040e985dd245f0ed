"""
Адаптер движка распознавания (Tesseract).

Содержит:
    - Протокол RecognitionEngine — экземпляр движка с жизненным циклом
      load_language -> initialize -> set_parameters -> recognize -> terminate
    - TesseractEngine — реализация через pytesseract
    - engine_session — захват экземпляра с гарантированным освобождением
    - recognize_image — распознавание одного изображения "под ключ"

Блокирующие вызовы pytesseract выполняются в пуле потоков,
чтобы не останавливать event loop.
"""

import logging
import shlex
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Mapping, Optional, Protocol

import pytesseract
from PIL import Image
from starlette.concurrency import run_in_threadpool

from ocr_service.config import settings
from ocr_service.exceptions import EngineError, RecognitionError
from ocr_service.schemas import OCRProfile, RecognitionResult, WordResult

logger = logging.getLogger(__name__)

if settings.tesseract_cmd:
    pytesseract.pytesseract.tesseract_cmd = settings.tesseract_cmd

# Параметры, которые Tesseract принимает только флагами командной строки
_FLAG_PARAMETERS = {
    "tessedit_ocr_engine_mode": "--oem",
    "tessedit_pageseg_mode": "--psm",
}

_TESSERACT_ERRORS = (pytesseract.TesseractError, OSError, RuntimeError)


class RecognitionEngine(Protocol):
    """Один экземпляр движка OCR."""

    async def load_language(self, languages: str) -> None: ...

    async def initialize(self) -> None: ...

    async def set_parameters(self, parameters: Mapping[str, str]) -> None: ...

    async def recognize(self, image_path: str) -> RecognitionResult: ...

    async def terminate(self) -> None: ...


EngineFactory = Callable[[], RecognitionEngine]


class TesseractEngine:
    """
    Экземпляр движка Tesseract.

    Tesseract запускается отдельным процессом на каждое распознавание,
    поэтому экземпляр хранит проверенную конфигурацию: языки, параметры
    и флаги командной строки. После terminate() экземпляр непригоден.

    Args:
        include_hocr: дополнительно получать hOCR разметку
            (None — берётся из настроек)
    """

    def __init__(self, include_hocr: Optional[bool] = None):
        self._languages: Optional[str] = None
        self._parameters: dict[str, str] = {}
        self._ready = False
        self._terminated = False
        self._include_hocr = (
            settings.include_hocr if include_hocr is None else include_hocr
        )

    async def load_language(self, languages: str) -> None:
        """
        Проверяет, что языки установлены, и запоминает их.

        Args:
            languages: языки в формате Tesseract ("spa+eng")

        Raises:
            EngineError: если язык не установлен или Tesseract недоступен
        """
        self._check_alive()
        try:
            installed = await run_in_threadpool(pytesseract.get_languages, config="")
        except _TESSERACT_ERRORS as e:
            raise EngineError(f"Не удалось получить список языков Tesseract: {e}") from e

        missing = [lang for lang in languages.split("+") if lang not in installed]
        if missing:
            raise EngineError(f"Языки не установлены в Tesseract: {', '.join(missing)}")

        self._languages = languages

    async def initialize(self) -> None:
        """Проверяет работоспособность бинарника Tesseract."""
        self._check_alive()
        if self._languages is None:
            raise EngineError("initialize() вызван до load_language()")

        try:
            version = await run_in_threadpool(pytesseract.get_tesseract_version)
        except _TESSERACT_ERRORS as e:
            raise EngineError(f"Tesseract недоступен: {e}") from e

        logger.debug(f"Движок инициализирован: tesseract {version}, lang={self._languages}")
        self._ready = True

    async def set_parameters(self, parameters: Mapping[str, str]) -> None:
        self._check_alive()
        self._parameters.update({str(k): str(v) for k, v in parameters.items()})

    async def recognize(self, image_path: str) -> RecognitionResult:
        """
        Распознаёт текст на изображении.

        Один вызов image_to_data даёт и текст, и уверенность, и координаты.

        Args:
            image_path: путь к изображению

        Returns:
            RecognitionResult: текст, уверенность, слова, TSV (и hOCR)

        Raises:
            EngineError: при ошибке чтения изображения или Tesseract
        """
        self._check_alive()
        if not self._ready:
            raise EngineError("recognize() вызван до initialize()")

        try:
            return await run_in_threadpool(self._recognize_sync, image_path)
        except _TESSERACT_ERRORS as e:
            raise EngineError(f"Ошибка распознавания {image_path}: {e}") from e

    async def terminate(self) -> None:
        if self._terminated:
            return
        self._terminated = True
        self._ready = False
        self._parameters.clear()

    @property
    def config_string(self) -> str:
        """Конфиг Tesseract: --oem/--psm + -c key=value."""
        parts = []
        for key, flag in _FLAG_PARAMETERS.items():
            if key in self._parameters:
                parts.append(f"{flag} {self._parameters[key]}")
        for key, value in self._parameters.items():
            if key not in _FLAG_PARAMETERS:
                parts.append("-c " + shlex.quote(f"{key}={value}"))
        return " ".join(parts)

    def _check_alive(self):
        if self._terminated:
            raise EngineError("Экземпляр движка уже освобождён")

    def _recognize_sync(self, image_path: str) -> RecognitionResult:
        config = self.config_string

        with Image.open(image_path) as image:
            image.load()
            width, height = image.size

            data = pytesseract.image_to_data(
                image,
                lang=self._languages,
                config=config,
                output_type=pytesseract.Output.DICT,
            )

            hocr = None
            if self._include_hocr:
                hocr = pytesseract.image_to_pdf_or_hocr(
                    image,
                    lang=self._languages,
                    config=config,
                    extension="hocr",
                ).decode("utf-8")

        return build_result(data, width, height, hocr=hocr)


def build_result(
    data: dict,
    width: int,
    height: int,
    hocr: Optional[str] = None,
) -> RecognitionResult:
    """
    Собирает RecognitionResult из словаря pytesseract.image_to_data().

    Args:
        data: словарь Output.DICT
        width: ширина изображения
        height: высота изображения
        hocr: разметка hOCR, если была получена

    Returns:
        RecognitionResult: итоговый результат
    """
    # Средняя уверенность только для реальных слов (conf >= 0)
    confidences = [c for c in (_as_float(c) for c in data["conf"]) if c >= 0]
    avg_confidence = sum(confidences) / len(confidences) if confidences else 0.0

    return RecognitionResult(
        text=_assemble_text_from_data(data),
        confidence=avg_confidence,
        words=tuple(_extract_words(data)),
        width=width,
        height=height,
        hocr=hocr,
        tsv=_data_to_tsv(data),
    )


def _as_float(value) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return -1.0


def _assemble_text_from_data(data: dict) -> str:
    """
    Собирает текст с учётом структуры страницы.

    Слова одной строки — через пробел, строки блока — через \\n,
    блоки — через пустую строку.
    """
    # {block_num: {par_num: {line_num: [words]}}}
    blocks: dict = {}

    for i, raw in enumerate(data["text"]):
        word = str(raw).strip()
        if not word:
            continue

        lines = blocks.setdefault(data["block_num"][i], {}).setdefault(
            data["par_num"][i], {}
        )
        lines.setdefault(data["line_num"][i], []).append(word)

    result_blocks = []
    for block_num in sorted(blocks):
        block_lines = []
        for par_num in sorted(blocks[block_num]):
            for line_num in sorted(blocks[block_num][par_num]):
                block_lines.append(" ".join(blocks[block_num][par_num][line_num]))
        result_blocks.append("\n".join(block_lines))

    return "\n\n".join(result_blocks)


def _extract_words(data: dict) -> list[WordResult]:
    words = []
    for i, raw in enumerate(data["text"]):
        text = str(raw).strip()
        if not text:
            continue

        left, top = int(data["left"][i]), int(data["top"][i])
        words.append(
            WordResult(
                text=text,
                confidence=max(_as_float(data["conf"][i]), 0.0),
                bbox={
                    "left": left,
                    "top": top,
                    "right": left + int(data["width"][i]),
                    "bottom": top + int(data["height"][i]),
                },
                block_num=int(data["block_num"][i]),
                par_num=int(data["par_num"][i]),
                line_num=int(data["line_num"][i]),
            )
        )
    return words


def _data_to_tsv(data: dict) -> str:
    """Восстанавливает TSV Tesseract из того же словаря (без повторного OCR)."""
    columns = list(data)
    rows = ["\t".join(columns)]
    for i in range(len(data["text"])):
        rows.append("\t".join(str(data[col][i]) for col in columns))
    return "\n".join(rows)


async def configure_engine(engine: RecognitionEngine, profile: OCRProfile) -> None:
    """Загружает языки профиля, инициализирует движок и применяет параметры."""
    await engine.load_language(profile.lang_string)
    await engine.initialize()
    await engine.set_parameters(profile.engine_parameters())


async def release_engine(engine: RecognitionEngine) -> None:
    """Освобождает экземпляр движка. Ошибки освобождения только логируются."""
    try:
        await engine.terminate()
    except Exception as e:
        logger.warning(f"Не удалось освободить движок: {e}")


@asynccontextmanager
async def engine_session(
    profile: OCRProfile,
    engine_factory: Optional[EngineFactory] = None,
) -> AsyncIterator[RecognitionEngine]:
    """
    Захватывает новый экземпляр движка, настроенный под профиль.

    Экземпляр освобождается на любом пути выхода, в том числе
    при ошибке настройки, до того как ошибка покинет контекст.

    Args:
        profile: профиль OCR
        engine_factory: фабрика экземпляров (по умолчанию TesseractEngine)

    Yields:
        RecognitionEngine: готовый к распознаванию экземпляр
    """
    factory = engine_factory or TesseractEngine
    engine = factory()
    try:
        await configure_engine(engine, profile)
        yield engine
    finally:
        await release_engine(engine)


async def recognize_image(
    image_path: str,
    profile: OCRProfile,
    engine_factory: Optional[EngineFactory] = None,
    page_number: Optional[int] = None,
) -> RecognitionResult:
    """
    Распознаёт одно изображение на собственном экземпляре движка.

    Экземпляры дорогие: для серии изображений используйте EnginePool.

    Args:
        image_path: путь к изображению
        profile: профиль OCR
        engine_factory: фабрика экземпляров движка
        page_number: номер страницы для контекста ошибки

    Returns:
        RecognitionResult: результат распознавания

    Raises:
        RecognitionError: при любой ошибке движка (движок уже освобождён)
    """
    try:
        async with engine_session(profile, engine_factory) as engine:
            return await engine.recognize(image_path)
    except Exception as e:
        context = f"страница {page_number}" if page_number is not None else image_path
        logger.error(f"Ошибка OCR ({context}, профиль {profile.name}): {e}")
        raise RecognitionError(
            f"Ошибка обработки изображения ({context}): {e}",
            image_path=image_path,
            page_number=page_number,
        ) from e


async def check_tesseract_installation() -> Optional[str]:
    """
    Проверяет доступность Tesseract.

    Returns:
        str: версия Tesseract или None, если он недоступен
    """
    try:
        version = await run_in_threadpool(pytesseract.get_tesseract_version)
    except _TESSERACT_ERRORS as e:
        logger.error(f"Ошибка проверки Tesseract: {e}")
        return None
    return str(version)
