"""Anthropic vision provider for receipt extraction."""

import base64
import logging

from anthropic import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AsyncAnthropic,
)
from anthropic.types import (
    CacheControlEphemeralParam,
    MessageParam,
    TextBlockParam,
)
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from receipt_cascade.errors import (
    ExtractionIncompleteError,
    ExtractionRefusedError,
    ProviderInvocationError,
)
from receipt_cascade.integrations.base import PromptSpec, is_transient_status

logger = logging.getLogger(__name__)


def _is_retryable_error(exception: BaseException) -> bool:
    """Retry on network errors, rate limits (429) and server errors (5xx)."""
    if isinstance(exception, APIConnectionError):
        return True
    if isinstance(exception, APIStatusError):
        return is_transient_status(exception.status_code)
    return False


class AnthropicProvider:
    """
    Extraction provider backed by Claude's Messages API.

    The image is sent as a base64 content block next to the rendered user
    prompt; the system prompt is marked for ephemeral prompt caching since it
    is identical across requests.
    """

    name = "anthropic"

    def __init__(
        self,
        api_key: str | None = None,
        client: AsyncAnthropic | None = None,
    ) -> None:
        """
        Initialize the Anthropic provider.

        Args:
            api_key: Anthropic API key (ignored when ``client`` is given)
            client: Optional pre-configured AsyncAnthropic client
        """
        self.client = client or AsyncAnthropic(api_key=api_key)

    @retry(
        retry=retry_if_exception(_is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _create(self, image: bytes, prompt: PromptSpec):
        messages: list[MessageParam] = [
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": prompt.media_type,
                            "data": base64.b64encode(image).decode("ascii"),
                        },
                    },
                    {"type": "text", "text": prompt.user_prompt},
                ],
            }
        ]
        return await self.client.messages.create(
            model=prompt.model,
            max_tokens=prompt.max_tokens,
            temperature=prompt.temperature,
            system=[
                TextBlockParam(
                    type="text",
                    text=prompt.system_prompt,
                    cache_control=CacheControlEphemeralParam(type="ephemeral"),
                )
            ],
            messages=messages,
        )

    async def extract(self, image: bytes, prompt: PromptSpec) -> str:
        """
        Send the receipt image to Claude and return the raw response text.

        Args:
            image: Encoded image bytes
            prompt: Rendered prompts and model parameters

        Returns:
            Concatenated text blocks of the response

        Raises:
            ExtractionRefusedError: If the model refuses the request
            ExtractionIncompleteError: If the response is truncated
            ProviderInvocationError: For API errors (after retries) or empty output
        """
        try:
            response = await self._create(image, prompt)
        except APIError as e:
            raise ProviderInvocationError(
                f"Anthropic request failed for model {prompt.model}",
                {"reason": str(e)},
            ) from e

        if response.stop_reason == "refusal":
            raise ExtractionRefusedError("Model refused to process the request")

        if response.stop_reason == "max_tokens":
            raise ExtractionIncompleteError(
                "Response truncated due to token limit. Try increasing max_tokens."
            )

        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise ProviderInvocationError(f"Empty response from {prompt.model}")

        logger.debug(
            "Anthropic %s used %s input / %s output tokens",
            prompt.model,
            response.usage.input_tokens,
            response.usage.output_tokens,
        )
        return text
