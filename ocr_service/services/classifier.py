"""
Определение типа документа по распознанному тексту.

Эвристики в порядке приоритета:
    1. Ключевые слова счёта (factura, iva, total:) -> invoice
    2. Длинные числа (5+ цифр подряд)             -> numbers
    3. Два слова из 3+ латинских букв подряд      -> document
    4. Иначе                                       -> general

Определение "по возможности": любая ошибка даёт general.
"""

import logging
import re
from typing import Optional

from ocr_service.services.engine import EngineFactory, recognize_image
from ocr_service.services.profiles import DEFAULT_PROFILE_NAME, resolve_profile

logger = logging.getLogger(__name__)

INVOICE_KEYWORDS = ("factura", "iva", "total:")

_LONG_NUMBER_RE = re.compile(r"\d{5,}")
# Только латиница без диакритики: "año niño" не считается парой слов
_WORD_PAIR_RE = re.compile(r"[a-z]{3,}\s+[a-z]{3,}", re.IGNORECASE)


def classify_text(text: str) -> str:
    """
    Выбирает профиль по тексту.

    Args:
        text: распознанный текст

    Returns:
        str: имя профиля
    """
    text = text.lower()

    if any(keyword in text for keyword in INVOICE_KEYWORDS):
        return "invoice"
    if _LONG_NUMBER_RE.search(text):
        return "numbers"
    if _WORD_PAIR_RE.search(text):
        return "document"
    return DEFAULT_PROFILE_NAME


async def detect_document_type(
    image_path: str,
    engine_factory: Optional[EngineFactory] = None,
) -> str:
    """
    Распознаёт образец документа профилем по умолчанию и выбирает профиль.

    Args:
        image_path: изображение (или первая страница PDF)
        engine_factory: фабрика экземпляров движка

    Returns:
        str: имя профиля; general при любой ошибке
    """
    try:
        sample = await recognize_image(
            image_path,
            resolve_profile(DEFAULT_PROFILE_NAME),
            engine_factory,
        )
    except Exception as e:
        logger.warning(f"Ошибка определения типа документа: {e}")
        return DEFAULT_PROFILE_NAME

    profile_name = classify_text(sample.text)
    logger.info(f"   Тип документа: {profile_name}")
    return profile_name
