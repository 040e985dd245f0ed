"""
Исключения OCR сервиса.

Иерархия:
    OCRServiceError
        EngineError          — сбой примитива движка (загрузка языка, init, распознавание)
        RecognitionError     — сбой распознавания изображения/страницы
        RasterizationError   — сбой pdftoppm или ноль страниц на выходе
        PoolBatchError       — сбой хотя бы одной страницы в пакете пула
        EmptyDocumentError   — агрегация по пустому набору страниц

Неизвестный профиль и ошибки удаления временных файлов исключениями
не являются: первое молча заменяется профилем по умолчанию, второе логируется.
"""

from typing import Optional


class OCRServiceError(Exception):
    """Базовое исключение сервиса."""


class EngineError(OCRServiceError):
    """Ошибка экземпляра движка Tesseract."""


class RecognitionError(OCRServiceError):
    """
    Ошибка распознавания одного изображения.

    Attributes:
        image_path: путь к изображению
        page_number: номер страницы (None для одиночного изображения)
    """

    def __init__(
        self,
        message: str,
        image_path: str,
        page_number: Optional[int] = None,
    ):
        super().__init__(message)
        self.image_path = image_path
        self.page_number = page_number


class RasterizationError(OCRServiceError):
    """Ошибка преобразования PDF в изображения."""


class PoolBatchError(OCRServiceError):
    """
    Ошибка пакета страниц, обработанного пулом.

    Attributes:
        failed_pages: номера страниц, распознавание которых не удалось
    """

    def __init__(self, message: str, failed_pages: list[int]):
        super().__init__(message)
        self.failed_pages = failed_pages


class EmptyDocumentError(OCRServiceError):
    """Документ не содержит страниц для агрегации."""
