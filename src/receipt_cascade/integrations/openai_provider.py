"""OpenAI vision provider for receipt extraction."""

import base64
import logging

from openai import (
    APIConnectionError,
    APIError,
    APIStatusError,
    AsyncOpenAI,
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


class OpenAIProvider:
    """Extraction provider backed by OpenAI chat completions in JSON mode."""

    name = "openai"

    def __init__(
        self,
        api_key: str | None = None,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self.client = client or AsyncOpenAI(api_key=api_key)

    @retry(
        retry=retry_if_exception(_is_retryable_error),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _create(self, image: bytes, prompt: PromptSpec):
        b64 = base64.b64encode(image).decode("ascii")
        return await self.client.chat.completions.create(
            model=prompt.model,
            max_completion_tokens=prompt.max_tokens,
            temperature=prompt.temperature,
            response_format={"type": "json_object"},
            messages=[
                {"role": "system", "content": prompt.system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt.user_prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{prompt.media_type};base64,{b64}"},
                        },
                    ],
                },
            ],
        )

    async def extract(self, image: bytes, prompt: PromptSpec) -> str:
        """
        Send the receipt image to an OpenAI model and return the raw JSON text.

        Raises:
            ExtractionRefusedError: If the model refuses the request
            ExtractionIncompleteError: If generation stopped at the token limit
            ProviderInvocationError: For API errors (after retries) or empty output
        """
        try:
            response = await self._create(image, prompt)
        except APIError as e:
            raise ProviderInvocationError(
                f"OpenAI request failed for model {prompt.model}",
                {"reason": str(e)},
            ) from e

        if not response.choices:
            raise ProviderInvocationError(f"No choices returned by {prompt.model}")

        choice = response.choices[0]
        if getattr(choice.message, "refusal", None):
            raise ExtractionRefusedError(
                "Model refused to process the request",
                {"refusal": choice.message.refusal},
            )

        if choice.finish_reason == "length":
            raise ExtractionIncompleteError(
                "Response truncated due to token limit. Try increasing max_tokens."
            )

        content = choice.message.content or ""
        if not content.strip():
            raise ProviderInvocationError(f"Empty response from {prompt.model}")

        if response.usage is not None:
            logger.debug(
                "OpenAI %s used %s prompt / %s completion tokens",
                prompt.model,
                response.usage.prompt_tokens,
                response.usage.completion_tokens,
            )
        return content
