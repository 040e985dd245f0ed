"""
Общие фикстуры тестов.

FakeEngine повторяет жизненный цикл экземпляра Tesseract, но ничего
не запускает: текст, задержки и ошибки задаются фабрикой по имени файла.
"""

import asyncio
from pathlib import Path
from typing import Optional

import pytest

from ocr_service.exceptions import EngineError
from ocr_service.schemas import RecognitionResult, WordResult
from ocr_service.services import rasterizer


class FakeEngine:
    def __init__(self, factory: "FakeEngineFactory"):
        self.factory = factory
        self.languages: Optional[str] = None
        self.parameters: dict[str, str] = {}
        self.initialized = False
        self.terminate_calls = 0
        self.recognized: list[str] = []

    def _maybe_fail(self, stage: str):
        if self.factory.fail_stage == stage:
            raise EngineError(f"сбой на этапе {stage}")

    async def load_language(self, languages: str) -> None:
        self._maybe_fail("load_language")
        self.languages = languages

    async def initialize(self) -> None:
        self._maybe_fail("initialize")
        self.initialized = True

    async def set_parameters(self, parameters) -> None:
        self._maybe_fail("set_parameters")
        self.parameters.update(parameters)

    async def recognize(self, image_path: str) -> RecognitionResult:
        assert self.terminate_calls == 0, "recognize() после terminate()"
        name = Path(image_path).name

        self.factory.active += 1
        self.factory.max_active = max(self.factory.max_active, self.factory.active)
        try:
            await asyncio.sleep(self.factory.delays.get(name, 0))
            self._maybe_fail("recognize")
            if name in self.factory.fail_names:
                raise EngineError(f"не удалось распознать {name}")
        finally:
            self.factory.active -= 1

        self.recognized.append(image_path)
        text = self.factory.texts.get(name, f"texto de {name}")
        return RecognitionResult(
            text=text,
            confidence=self.factory.confidences.get(name, 90.0),
            words=tuple(
                WordResult(
                    text=word,
                    confidence=90.0,
                    bbox={"left": 0, "top": 0, "right": 10, "bottom": 10},
                )
                for word in text.split()
            ),
        )

    async def terminate(self) -> None:
        self.terminate_calls += 1


class FakeEngineFactory:
    """
    Фабрика FakeEngine со счётчиками созданных и освобождённых экземпляров.

    Args:
        texts: имя файла -> распознанный текст
        delays: имя файла -> задержка распознавания в секундах
        confidences: имя файла -> уверенность
        fail_stage: этап жизненного цикла, на котором падает каждый экземпляр
        fail_names: имена файлов, распознавание которых падает
    """

    def __init__(
        self,
        texts: Optional[dict] = None,
        delays: Optional[dict] = None,
        confidences: Optional[dict] = None,
        fail_stage: Optional[str] = None,
        fail_names: tuple = (),
    ):
        self.texts = texts or {}
        self.delays = delays or {}
        self.confidences = confidences or {}
        self.fail_stage = fail_stage
        self.fail_names = set(fail_names)
        self.engines: list[FakeEngine] = []
        self.active = 0
        self.max_active = 0

    def __call__(self) -> FakeEngine:
        engine = FakeEngine(self)
        self.engines.append(engine)
        return engine

    @property
    def created(self) -> int:
        return len(self.engines)

    @property
    def terminated(self) -> int:
        return sum(engine.terminate_calls for engine in self.engines)

    @property
    def recognitions(self) -> int:
        return sum(len(engine.recognized) for engine in self.engines)


@pytest.fixture
def engine_factory() -> FakeEngineFactory:
    return FakeEngineFactory()


@pytest.fixture
def scratch_dir(tmp_path) -> Path:
    path = tmp_path / "scratch"
    path.mkdir()
    return path


class FakePdftoppm:
    """
    Подмена pdf2image.convert_from_path: пишет по пустому PNG на страницу
    с именами как у pdftoppm (<prefix>0001-<страница с паддингом>.png).
    """

    def __init__(self, pages: int = 1):
        self.pages = pages
        self.calls: list[dict] = []

    def __call__(self, pdf_path, **kwargs):
        self.calls.append({"pdf_path": pdf_path, **kwargs})
        folder = Path(kwargs["output_folder"])
        width = len(str(self.pages))
        paths = []
        for page in range(1, self.pages + 1):
            path = folder / f"{kwargs['output_file']}0001-{str(page).zfill(width)}.png"
            path.write_bytes(b"\x89PNG\r\n\x1a\n")
            paths.append(str(path))
        return paths


@pytest.fixture
def fake_pdftoppm(monkeypatch) -> FakePdftoppm:
    fake = FakePdftoppm()
    monkeypatch.setattr(rasterizer, "convert_from_path", fake)
    return fake


@pytest.fixture
def pdf_file(tmp_path) -> Path:
    path = tmp_path / "documento.pdf"
    path.write_bytes(b"%PDF-1.4\n%fake\n")
    return path


@pytest.fixture
def image_file(tmp_path) -> Path:
    path = tmp_path / "scan.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n")
    return path
