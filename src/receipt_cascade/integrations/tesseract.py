"""Local Tesseract OCR for the last-resort path."""

import logging

import pytesseract
from PIL import Image

from receipt_cascade.errors import ProviderInvocationError
from receipt_cascade.imaging.analyzer import decode_image

logger = logging.getLogger(__name__)

DEFAULT_CONFIG = "--oem 3 --psm 6"


class TesseractOCREngine:
    """Runs the local ``tesseract`` binary through pytesseract."""

    name = "tesseract"

    def __init__(self, lang: str = "eng", config: str = DEFAULT_CONFIG) -> None:
        self.lang = lang
        self.config = config

    def extract_text(self, image: bytes) -> str:
        """
        Extract text from encoded image bytes.

        Raises:
            ImageDecodeError: If the bytes are not a readable image
            ProviderInvocationError: If tesseract is missing or fails
        """
        pil_image: Image.Image = decode_image(image)
        try:
            text = pytesseract.image_to_string(pil_image, lang=self.lang, config=self.config)
        except (pytesseract.TesseractNotFoundError, pytesseract.TesseractError) as e:
            raise ProviderInvocationError("Tesseract OCR failed", {"reason": str(e)}) from e

        logger.debug("Tesseract extracted %d characters", len(text))
        return text
