"""Provider-neutral contract for extraction and OCR backends."""

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict


class PromptSpec(BaseModel):
    """Everything a provider needs besides the image itself."""

    model_config = ConfigDict(frozen=True)

    model: str
    system_prompt: str
    user_prompt: str
    media_type: str = "image/png"
    max_tokens: int = 1000
    temperature: float = 0.1


@runtime_checkable
class ExtractionProvider(Protocol):
    """An AI vendor able to turn a receipt image into raw response text.

    Implementations raise ``ProviderInvocationError`` (or a subclass) for any
    failure; they never parse the response themselves.
    """

    name: str

    async def extract(self, image: bytes, prompt: PromptSpec) -> str: ...


@runtime_checkable
class OCREngine(Protocol):
    """Deterministic text extraction with no semantic parsing."""

    name: str

    def extract_text(self, image: bytes) -> str: ...


def is_transient_status(status_code: int | None) -> bool:
    """HTTP statuses worth retrying: rate limiting and server errors."""
    if status_code is None:
        return False
    return status_code == 429 or status_code >= 500
