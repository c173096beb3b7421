"""Extraction providers and OCR engines."""

from receipt_cascade.integrations.anthropic_provider import AnthropicProvider
from receipt_cascade.integrations.base import (
    ExtractionProvider,
    OCREngine,
    PromptSpec,
    is_transient_status,
)
from receipt_cascade.integrations.ocr import VisionOCREngine
from receipt_cascade.integrations.openai_provider import OpenAIProvider
from receipt_cascade.integrations.tesseract import TesseractOCREngine

__all__ = [
    "AnthropicProvider",
    "ExtractionProvider",
    "OCREngine",
    "OpenAIProvider",
    "PromptSpec",
    "TesseractOCREngine",
    "VisionOCREngine",
    "is_transient_status",
]
