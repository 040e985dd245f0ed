"""
Работа с файлами: папки загрузок, уникальные имена, удаление временных файлов.

Ошибки удаления никогда не пробрасываются — только логируются.
"""

import logging
import random
import time
from pathlib import Path
from typing import Iterable

from ocr_service.config import settings

logger = logging.getLogger(__name__)


def ensure_directories() -> None:
    """Создаёт папки загрузок и временных страниц."""
    for directory in (settings.upload_dir, settings.scratch_dir):
        Path(directory).mkdir(parents=True, exist_ok=True)


def unique_upload_path(original_name: str) -> Path:
    """
    Уникальный путь для загруженного файла: <время>-<случайное><расширение>.

    Args:
        original_name: имя файла от клиента (берётся только расширение)

    Returns:
        Path: путь внутри папки загрузок
    """
    suffix = Path(original_name or "").suffix.lower()
    unique = f"{int(time.time() * 1000)}-{random.randint(0, 10**9)}"
    return Path(settings.upload_dir) / f"{unique}{suffix}"


def save_upload(content: bytes, original_name: str) -> Path:
    path = unique_upload_path(original_name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path


def remove_file(path: str) -> bool:
    """
    Удаляет файл.

    Args:
        path: путь к файлу

    Returns:
        bool: True если файл удалён
    """
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return False
    except OSError as e:
        logger.warning(f"Не удалось удалить временный файл {path}: {e}")
        return False
    return True


def remove_files(paths: Iterable[str]) -> int:
    """Удаляет файлы, возвращает количество удалённых."""
    return sum(1 for path in paths if remove_file(path))
