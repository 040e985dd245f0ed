"""
Реестр профилей OCR.

Профиль — именованный набор настроек Tesseract под тип документа.
Реестр создаётся один раз при импорте и только читается.
"""

import logging
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from ocr_service.schemas import OCRProfile, PdfOptions

logger = logging.getLogger(__name__)

DEFAULT_PROFILE_NAME = "general"


BUILTIN_PROFILES: tuple[OCRProfile, ...] = (
    # Документы общего вида
    OCRProfile(
        name="general",
        languages=("spa",),
        engine_mode=3,
        page_seg_mode=6,
    ),
    # Плотный хорошо свёрстанный текст (книги, статьи)
    OCRProfile(
        name="document",
        languages=("spa",),
        engine_mode=3,
        page_seg_mode=3,
        parameters={"textord_min_linesize": "2.5"},
    ),
    # Счета и документы с таблицами
    OCRProfile(
        name="invoice",
        languages=("spa",),
        engine_mode=3,
        page_seg_mode=3,
        parameters={
            "textord_tabfind_find_tables": "1",
            "textord_tablefind_recognize_tables": "1",
            "numeric_punctuation": ".,",
        },
        pdf_options=PdfOptions(resolution=300, grayscale=True),
    ),
    # Номера и коды в одну строку
    OCRProfile(
        name="numbers",
        languages=("eng",),
        engine_mode=3,
        page_seg_mode=7,
        parameters={"tessedit_char_whitelist": "0123456789-_.:/"},
    ),
    # Документы на нескольких языках
    OCRProfile(
        name="multilang",
        languages=("spa", "eng"),
        engine_mode=3,
        page_seg_mode=3,
    ),
)


class ProfileRegistry:
    """
    Неизменяемое отображение имя -> профиль.

    resolve() никогда не падает: неизвестное имя даёт профиль по умолчанию.
    """

    def __init__(
        self,
        profiles: Iterable[OCRProfile],
        default_name: str = DEFAULT_PROFILE_NAME,
    ):
        table = {profile.name: profile for profile in profiles}
        if default_name not in table:
            raise ValueError(f"Профиль по умолчанию {default_name!r} не найден")

        self._profiles: Mapping[str, OCRProfile] = MappingProxyType(table)
        self._default_name = default_name

    @property
    def default(self) -> OCRProfile:
        return self._profiles[self._default_name]

    def resolve(self, name: Optional[str]) -> OCRProfile:
        """
        Возвращает профиль по имени.

        Args:
            name: имя профиля (None или неизвестное — профиль по умолчанию)

        Returns:
            OCRProfile: найденный профиль или профиль по умолчанию
        """
        profile = self._profiles.get(name) if name else None
        if profile is None:
            logger.debug(f"Профиль {name!r} не найден, используется {self._default_name}")
            return self.default
        return profile

    def names(self) -> list[str]:
        return list(self._profiles)

    def __contains__(self, name: str) -> bool:
        return name in self._profiles

    def __len__(self) -> int:
        return len(self._profiles)


# Глобальный реестр
registry = ProfileRegistry(BUILTIN_PROFILES)


def resolve_profile(name: Optional[str]) -> OCRProfile:
    """Ищет профиль в глобальном реестре."""
    return registry.resolve(name)
