"""Tesseract text recognition for preprocessed screenshots."""

import asyncio
import io
import logging
import shlex
from pathlib import Path
from typing import Optional

import pytesseract
from PIL import Image

from .config import (
    MAX_PROCESSED_FILES,
    OCR_CHAR_WHITELIST,
    OCR_LANGUAGE,
    PROCESSED_DIR,
    SAVE_PROCESSED_IMAGES,
)
from .exceptions import RecognitionError
from .imaging import ImageParams, preprocess, save_processed_image


logger = logging.getLogger(__name__)


def build_config(char_whitelist: str) -> str:
    """Tesseract command line options restricting output to the whitelist."""
    # Spaces are word separators for tesseract, not whitelist members.
    whitelist = char_whitelist.replace(" ", "")
    return f"--psm 6 -c tessedit_char_whitelist={shlex.quote(whitelist)}"


def recognize(data: bytes, language: str = OCR_LANGUAGE, char_whitelist: str = OCR_CHAR_WHITELIST,
              source: str = "image") -> str:
    """Run OCR on image bytes and return newline separated text."""
    try:
        with Image.open(io.BytesIO(data)) as image:
            return pytesseract.image_to_string(image, lang=language, config=build_config(char_whitelist))
    except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError, OSError, RuntimeError) as e:
        raise RecognitionError(source, str(e)) from e


class TextRecognizer:
    """Preprocesses and recognizes screenshot files off the event loop."""

    def __init__(self, params: Optional[ImageParams] = None, language: str = OCR_LANGUAGE,
                 char_whitelist: str = OCR_CHAR_WHITELIST, processed_dir: Optional[Path] = PROCESSED_DIR,
                 save_processed: bool = SAVE_PROCESSED_IMAGES, max_processed_files: int = MAX_PROCESSED_FILES):
        self.params = params or ImageParams.from_config()
        self.language = language
        self.char_whitelist = char_whitelist
        self.processed_dir = processed_dir
        self.save_processed = save_processed
        self.max_processed_files = max_processed_files

    def _recognize_file_sync(self, path: Path) -> str:
        try:
            data = Path(path).read_bytes()
            processed = preprocess(data, self.params)
        except OSError as e:
            raise RecognitionError(str(path), str(e)) from e
        del data

        if self.save_processed and self.processed_dir is not None:
            save_processed_image(processed, self.processed_dir, self.max_processed_files)

        return recognize(processed, self.language, self.char_whitelist, source=str(path))

    async def recognize_file(self, path: Path) -> str:
        """OCR a downloaded screenshot. Raises RecognitionError on failure."""
        logger.info(f"📂 Processing file: {path}")
        text = await asyncio.to_thread(self._recognize_file_sync, Path(path))

        logger.info("🔤 Recognized text:")
        for index, line in enumerate(l for l in text.split("\n") if l.strip()):
            logger.info(f"{index + 1}: {line.strip()}")
        return text
