"""
Схемы данных OCR сервиса.

Включает:
    - Внутренние dataclass'ы пайплайна (профиль, задача, результаты)
    - Pydantic модели для API ответов
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field


# =============================================================================
# Профиль OCR
# =============================================================================


@dataclass(frozen=True)
class PdfOptions:
    """
    Подсказки для растеризации PDF.

    Attributes:
        resolution: разрешение рендеринга в DPI
        grayscale: рендерить в оттенках серого
    """

    resolution: int
    grayscale: bool = False


@dataclass(frozen=True)
class OCRProfile:
    """
    Именованный набор настроек Tesseract.

    Attributes:
        name: имя профиля
        languages: языки Tesseract в порядке приоритета ("spa", "eng")
        engine_mode: OEM, режим движка (0-3)
        page_seg_mode: PSM, режим сегментации страницы (0-13)
        parameters: переопределения параметров Tesseract (-c key=value)
        pdf_options: подсказки растеризации (None — значения по умолчанию)
    """

    name: str
    languages: tuple[str, ...]
    engine_mode: int = 3
    page_seg_mode: int = 6
    parameters: Mapping[str, str] = field(default_factory=dict)
    pdf_options: Optional[PdfOptions] = None

    def __post_init__(self):
        if not self.languages:
            raise ValueError(f"Профиль {self.name}: не указаны языки")
        if not 0 <= self.engine_mode <= 3:
            raise ValueError(f"Профиль {self.name}: engine_mode вне диапазона 0-3")
        if not 0 <= self.page_seg_mode <= 13:
            raise ValueError(f"Профиль {self.name}: page_seg_mode вне диапазона 0-13")

        # Замораживаем вложенные коллекции
        object.__setattr__(self, "languages", tuple(self.languages))
        object.__setattr__(
            self, "parameters", MappingProxyType(dict(self.parameters))
        )

    @property
    def lang_string(self) -> str:
        """Языки в формате Tesseract: "spa+eng"."""
        return "+".join(self.languages)

    def engine_parameters(self) -> dict[str, str]:
        """Полный набор параметров движка: OEM/PSM + переопределения."""
        params = {
            "tessedit_ocr_engine_mode": str(self.engine_mode),
            "tessedit_pageseg_mode": str(self.page_seg_mode),
        }
        params.update(self.parameters)
        return params


# =============================================================================
# Результаты распознавания
# =============================================================================


@dataclass(frozen=True)
class WordResult:
    """
    Одно распознанное слово.

    Attributes:
        text: текст слова
        confidence: уверенность распознавания (0-100)
        bbox: {left, top, right, bottom} в пикселях
        block_num, par_num, line_num: положение в структуре страницы
    """

    text: str
    confidence: float
    bbox: Mapping[str, int]
    block_num: int = 0
    par_num: int = 0
    line_num: int = 0


@dataclass(frozen=True)
class RecognitionResult:
    """
    Результат распознавания одного изображения.

    Attributes:
        text: собранный текст (блоки разделены пустой строкой)
        confidence: средняя уверенность по словам (0-100)
        words: слова в порядке чтения
        width: ширина изображения в пикселях
        height: высота изображения в пикселях
        hocr: разметка hOCR (если запрошена)
        tsv: данные Tesseract в формате TSV
    """

    text: str
    confidence: float
    words: tuple[WordResult, ...] = ()
    width: int = 0
    height: int = 0
    hocr: Optional[str] = None
    tsv: Optional[str] = None


@dataclass(frozen=True)
class RecognitionJob:
    """
    Задача распознавания одной страницы.

    Attributes:
        job_id: идентификатор обработки документа
        page_number: номер страницы (начинается с 1)
        image_path: путь к изображению страницы
        profile: профиль OCR
    """

    job_id: str
    page_number: int
    image_path: str
    profile: OCRProfile


@dataclass(frozen=True)
class PageImage:
    """Изображение страницы после растеризации."""

    page_number: int
    path: str


@dataclass(frozen=True)
class PageResult:
    """Результат распознавания страницы PDF."""

    page_number: int
    result: RecognitionResult

    @property
    def confidence(self) -> float:
        return self.result.confidence


@dataclass(frozen=True)
class ImageDocumentResult:
    """Результат обработки одиночного изображения."""

    result: RecognitionResult
    profile: str

    @property
    def kind(self) -> str:
        return "image"


@dataclass(frozen=True)
class PdfDocumentResult:
    """
    Результат обработки PDF.

    Attributes:
        pages: страницы в физическом порядке
        total_pages: количество страниц
        average_confidence: средняя уверенность по страницам
        profile: имя использованного профиля
    """

    pages: tuple[PageResult, ...]
    total_pages: int
    average_confidence: float
    profile: str

    @property
    def kind(self) -> str:
        return "pdf"


DocumentResult = Union[ImageDocumentResult, PdfDocumentResult]


class StrategyKind(str, Enum):
    """Способ распознавания страниц PDF."""

    SEQUENTIAL = "sequential"
    POOLED = "pooled"


@dataclass(frozen=True)
class Strategy:
    """
    Выбранная стратегия распознавания.

    Attributes:
        kind: последовательно или через пул
        width: количество движков (1 для последовательной)
    """

    kind: StrategyKind
    width: int = 1


# =============================================================================
# Pydantic модели для API
# =============================================================================


class WordModel(BaseModel):
    """Слово в ответе API."""

    text: str
    confidence: float
    bbox: dict[str, int]
    block_num: int = 0
    par_num: int = 0
    line_num: int = 0


class RecognitionModel(BaseModel):
    """Поля распознавания, общие для изображения и страницы."""

    text: str
    confidence: float = Field(ge=0, le=100)
    words: list[WordModel] = []
    width: int = 0
    height: int = 0
    hocr: Optional[str] = None
    tsv: Optional[str] = None


class ImageData(RecognitionModel):
    """Результат для изображения."""

    type: Literal["image"] = "image"
    profile: str


class PageData(RecognitionModel):
    """Результат для одной страницы PDF."""

    page: int


class PdfData(BaseModel):
    """Результат для PDF."""

    type: Literal["pdf"] = "pdf"
    profile: str
    pages: list[PageData]
    total_pages: int
    average_confidence: float


class OCRResponse(BaseModel):
    """Успешный ответ POST /ocr."""

    success: bool = True
    data: Union[ImageData, PdfData] = Field(discriminator="type")


class ErrorResponse(BaseModel):
    """
    Ответ с ошибкой.

    Attributes:
        success: всегда False
        error: краткое описание
        message: подробности (исходная причина)
    """

    success: bool = False
    error: str
    message: Optional[str] = None


def _recognition_fields(result: RecognitionResult) -> dict:
    return {
        "text": result.text,
        "confidence": result.confidence,
        "words": [
            WordModel(
                text=w.text,
                confidence=w.confidence,
                bbox=dict(w.bbox),
                block_num=w.block_num,
                par_num=w.par_num,
                line_num=w.line_num,
            )
            for w in result.words
        ],
        "width": result.width,
        "height": result.height,
        "hocr": result.hocr,
        "tsv": result.tsv,
    }


def to_response_data(document: DocumentResult) -> Union[ImageData, PdfData]:
    """
    Преобразует результат пайплайна в модель ответа API.

    Args:
        document: результат обработки документа

    Returns:
        ImageData или PdfData в зависимости от типа документа
    """
    if isinstance(document, ImageDocumentResult):
        return ImageData(profile=document.profile, **_recognition_fields(document.result))

    return PdfData(
        profile=document.profile,
        pages=[
            PageData(page=page.page_number, **_recognition_fields(page.result))
            for page in document.pages
        ],
        total_pages=document.total_pages,
        average_confidence=document.average_confidence,
    )
