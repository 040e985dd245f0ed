"""
Конфигурация OCR сервиса.

Все значения читаются из .env файла (или переменных окружения).
Для локального запуска и тестов у каждого параметра есть дефолт.

Единый префикс: OCR_
Документация по параметрам: .env.example
"""

from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Настройки OCR сервиса.

    Читает переменные с префиксом OCR_ из .env файла.
    """

    model_config = SettingsConfigDict(
        env_prefix="OCR_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Сервер ---
    host: str = "0.0.0.0"
    port: int = 3000

    # --- API: лимиты ---
    max_file_size_mb: int = 10

    # --- Файлы ---
    # Загруженные документы
    upload_dir: str = "uploads"
    # Страницы PDF после растеризации (общая для всех запросов)
    scratch_dir: str = "uploads/temp"

    # --- Внешние программы ---
    # Пути задаются явно, автоматический поиск не выполняется
    tesseract_cmd: Optional[str] = None
    poppler_path: Optional[str] = None

    # --- Профили ---
    default_profile: str = "general"

    # --- Растеризация PDF ---
    pdf_default_dpi: int = 200

    # --- Пул движков ---
    max_pool_workers: int = 4

    # --- OCR: Tesseract ---
    # hOCR требует отдельного прохода Tesseract
    include_hocr: bool = False


# Глобальный экземпляр настроек
settings = Settings()
