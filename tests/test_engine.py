"""
Тесты адаптера движка: захват/освобождение экземпляра и разбор вывода Tesseract.
"""

import asyncio

import pytest
from PIL import Image

from conftest import FakeEngineFactory
from ocr_service.exceptions import EngineError, RecognitionError
from ocr_service.services import engine as engine_module
from ocr_service.services.engine import (
    TesseractEngine,
    build_result,
    engine_session,
    recognize_image,
)
from ocr_service.services.profiles import resolve_profile

# Вывод image_to_data: два блока, в первом две строки
SAMPLE_DATA = {
    "level": [1, 2, 3, 4, 5, 5, 4, 5, 2, 3, 4, 5],
    "page_num": [1] * 12,
    "block_num": [0, 1, 1, 1, 1, 1, 1, 1, 2, 2, 2, 2],
    "par_num": [0, 0, 1, 1, 1, 1, 1, 1, 0, 1, 1, 1],
    "line_num": [0, 0, 0, 1, 1, 1, 2, 2, 0, 0, 1, 1],
    "word_num": [0, 0, 0, 0, 1, 2, 0, 1, 0, 0, 0, 1],
    "left": [0, 0, 0, 0, 10, 50, 0, 10, 0, 0, 0, 10],
    "top": [0, 0, 0, 0, 20, 20, 0, 40, 0, 0, 0, 80],
    "width": [100, 0, 0, 0, 30, 40, 0, 60, 0, 0, 0, 35],
    "height": [100, 0, 0, 0, 10, 10, 0, 12, 0, 0, 0, 11],
    "conf": [-1, -1, -1, -1, 96, 88, -1, 70, -1, -1, -1, 50],
    "text": ["", "", "", "", "Hola", "mundo", "", "segunda", "", "", "", "total"],
}


class TestRecognizeImage:
    def test_success_creates_and_releases_one_engine(self, engine_factory, image_file):
        profile = resolve_profile("document")

        result = asyncio.run(recognize_image(str(image_file), profile, engine_factory))

        assert result.text == "texto de scan.png"
        assert engine_factory.created == 1
        assert engine_factory.terminated == 1

        engine = engine_factory.engines[0]
        assert engine.languages == "spa"
        assert engine.initialized
        assert engine.parameters["tessedit_pageseg_mode"] == "3"
        assert engine.parameters["textord_min_linesize"] == "2.5"

    @pytest.mark.parametrize(
        "stage", ["load_language", "initialize", "set_parameters", "recognize"]
    )
    def test_failure_releases_engine_and_raises(self, stage, image_file):
        factory = FakeEngineFactory(fail_stage=stage)

        with pytest.raises(RecognitionError) as exc_info:
            asyncio.run(recognize_image(str(image_file), resolve_profile("general"), factory))

        assert isinstance(exc_info.value.__cause__, EngineError)
        assert exc_info.value.image_path == str(image_file)
        assert factory.created == 1
        assert factory.terminated == 1

    def test_error_carries_page_number(self, image_file):
        factory = FakeEngineFactory(fail_names=("scan.png",))

        with pytest.raises(RecognitionError) as exc_info:
            asyncio.run(
                recognize_image(
                    str(image_file), resolve_profile("general"), factory, page_number=7
                )
            )

        assert exc_info.value.page_number == 7
        assert "страница 7" in str(exc_info.value)

    def test_terminate_failure_does_not_hide_result(self, engine_factory, image_file):
        class BrokenTerminate:
            def __init__(self):
                self.inner = engine_factory()

            def __getattr__(self, name):
                return getattr(self.inner, name)

            async def terminate(self):
                await self.inner.terminate()
                raise EngineError("terminate упал")

        result = asyncio.run(
            recognize_image(str(image_file), resolve_profile("general"), BrokenTerminate)
        )

        assert result.text == "texto de scan.png"
        assert engine_factory.terminated == 1


class TestEngineSession:
    def test_body_error_releases_engine_before_propagating(self, engine_factory):
        async def scenario():
            async with engine_session(resolve_profile("general"), engine_factory):
                assert engine_factory.terminated == 0
                raise KeyError("fallo")

        with pytest.raises(KeyError):
            asyncio.run(scenario())

        assert engine_factory.created == 1
        assert engine_factory.terminated == 1


class TestBuildResult:
    def test_text_assembled_by_blocks_and_lines(self):
        result = build_result(SAMPLE_DATA, 100, 100)
        assert result.text == "Hola mundo\nsegunda\n\ntotal"

    def test_confidence_ignores_non_word_rows(self):
        result = build_result(SAMPLE_DATA, 100, 100)
        assert result.confidence == pytest.approx((96 + 88 + 70 + 50) / 4)

    def test_words_with_bounding_boxes(self):
        result = build_result(SAMPLE_DATA, 100, 100)

        assert [w.text for w in result.words] == ["Hola", "mundo", "segunda", "total"]
        first = result.words[0]
        assert dict(first.bbox) == {"left": 10, "top": 20, "right": 40, "bottom": 30}
        assert first.confidence == 96
        assert (first.block_num, first.par_num, first.line_num) == (1, 1, 1)

    def test_tsv_rebuilt_from_data(self):
        tsv = build_result(SAMPLE_DATA, 100, 100).tsv.split("\n")
        assert tsv[0].split("\t") == list(SAMPLE_DATA)
        assert len(tsv) == 13
        assert tsv[5].endswith("\tHola")

    def test_empty_page(self):
        empty = {key: [] for key in SAMPLE_DATA}
        result = build_result(empty, 10, 10)
        assert result.text == ""
        assert result.confidence == 0.0
        assert result.words == ()


class TestTesseractEngine:
    @pytest.fixture
    def fake_tesseract(self, monkeypatch):
        calls = {}

        def image_to_data(image, lang, config, output_type):
            calls["image_to_data"] = {"size": image.size, "lang": lang, "config": config}
            return SAMPLE_DATA

        monkeypatch.setattr(engine_module.pytesseract, "get_languages", lambda config="": ["eng", "spa", "osd"])
        monkeypatch.setattr(engine_module.pytesseract, "get_tesseract_version", lambda: "5.3.0")
        monkeypatch.setattr(engine_module.pytesseract, "image_to_data", image_to_data)
        return calls

    def test_full_lifecycle(self, fake_tesseract, tmp_path):
        image_path = tmp_path / "page.png"
        Image.new("RGB", (120, 40), "white").save(image_path)

        async def scenario():
            engine = TesseractEngine(include_hocr=False)
            await engine.load_language("spa+eng")
            await engine.initialize()
            await engine.set_parameters(resolve_profile("numbers").engine_parameters())
            result = await engine.recognize(str(image_path))
            await engine.terminate()
            return result

        result = asyncio.run(scenario())

        assert result.width == 120
        assert result.height == 40
        assert result.hocr is None
        assert result.text.startswith("Hola mundo")
        assert fake_tesseract["image_to_data"] == {
            "size": (120, 40),
            "lang": "spa+eng",
            "config": "--oem 3 --psm 7 -c tessedit_char_whitelist=0123456789-_.:/",
        }

    def test_hocr_output(self, fake_tesseract, monkeypatch, tmp_path):
        image_path = tmp_path / "page.png"
        Image.new("RGB", (60, 30), "white").save(image_path)

        def image_to_pdf_or_hocr(image, lang, config, extension):
            fake_tesseract["hocr"] = {"lang": lang, "extension": extension}
            return "<div class='ocr_page'>Hola</div>".encode("utf-8")

        monkeypatch.setattr(
            engine_module.pytesseract, "image_to_pdf_or_hocr", image_to_pdf_or_hocr
        )

        async def scenario():
            engine = TesseractEngine(include_hocr=True)
            await engine.load_language("spa")
            await engine.initialize()
            return await engine.recognize(str(image_path))

        result = asyncio.run(scenario())

        assert result.hocr == "<div class='ocr_page'>Hola</div>"
        assert fake_tesseract["hocr"] == {"lang": "spa", "extension": "hocr"}
        assert result.text.startswith("Hola mundo")

    def test_missing_language(self, fake_tesseract):
        engine = TesseractEngine()
        with pytest.raises(EngineError, match="fra"):
            asyncio.run(engine.load_language("spa+fra"))

    def test_recognize_before_initialize(self, fake_tesseract, image_file):
        engine = TesseractEngine()
        with pytest.raises(EngineError):
            asyncio.run(engine.recognize(str(image_file)))

    def test_unreadable_image_is_engine_error(self, fake_tesseract, image_file):
        async def scenario():
            engine = TesseractEngine()
            await engine.load_language("spa")
            await engine.initialize()
            # Файл содержит только сигнатуру PNG, PIL его не откроет
            await engine.recognize(str(image_file))

        with pytest.raises(EngineError):
            asyncio.run(scenario())

    def test_unusable_after_terminate(self, fake_tesseract):
        async def scenario():
            engine = TesseractEngine()
            await engine.terminate()
            await engine.terminate()
            await engine.load_language("spa")

        with pytest.raises(EngineError):
            asyncio.run(scenario())

    def test_config_string_quotes_values(self):
        engine = TesseractEngine()
        asyncio.run(engine.set_parameters({"tessedit_pageseg_mode": "6", "user_defined_dpi": "300 dpi"}))
        assert engine.config_string == "--psm 6 -c 'user_defined_dpi=300 dpi'"
