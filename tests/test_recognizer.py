"""Tests for stalker/recognizer.py — Tesseract invocation (mocked)."""

import io
from unittest.mock import patch

import pytesseract
import pytest
from PIL import Image

from stalker.exceptions import RecognitionError
from stalker.imaging import ImageParams
from stalker.recognizer import TextRecognizer, build_config


def _screenshot_bytes() -> bytes:
    output = io.BytesIO()
    Image.new("RGB", (30, 10), (20, 20, 30)).save(output, format="PNG")
    return output.getvalue()


class TestBuildConfig:
    """Tests for build_config()."""

    def test_whitelist_without_spaces(self) -> None:
        config = build_config("ab c")
        assert config.startswith("--psm 6")
        assert "tessedit_char_whitelist=abc" in config

    def test_quotes_special_characters(self) -> None:
        assert "'ab()\"'" in build_config('ab()"')


class TestTextRecognizer:
    """Tests for TextRecognizer.recognize_file()."""

    @pytest.fixture
    def recognizer(self, tmp_path) -> TextRecognizer:
        return TextRecognizer(params=ImageParams(upscale=1.0), processed_dir=tmp_path / "processed",
                              save_processed=True, max_processed_files=5)

    async def test_returns_text_and_keeps_processed_copy(self, recognizer, tmp_path) -> None:
        image_path = tmp_path / "shot.png"
        image_path.write_bytes(_screenshot_bytes())

        with patch("stalker.recognizer.pytesseract.image_to_string", return_value="Alpha 0\nBravo 12\n") as ocr:
            text = await recognizer.recognize_file(image_path)

        assert text == "Alpha 0\nBravo 12\n"
        assert ocr.call_args.kwargs["lang"] == "pol"
        assert len(list((tmp_path / "processed").iterdir())) == 1

    async def test_engine_failure_raises_recognition_error(self, recognizer, tmp_path) -> None:
        image_path = tmp_path / "shot.png"
        image_path.write_bytes(_screenshot_bytes())

        with patch("stalker.recognizer.pytesseract.image_to_string",
                   side_effect=pytesseract.TesseractError(1, "boom")):
            with pytest.raises(RecognitionError) as excinfo:
                await recognizer.recognize_file(image_path)

        assert excinfo.value.source == str(image_path)

    async def test_missing_file_raises_recognition_error(self, recognizer, tmp_path) -> None:
        with pytest.raises(RecognitionError):
            await recognizer.recognize_file(tmp_path / "missing.png")
