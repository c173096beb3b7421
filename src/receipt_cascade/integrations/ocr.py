"""Google Cloud Vision text detection for the last-resort path."""

import threading

from google.api_core import exceptions as google_exceptions
from google.cloud import vision

from receipt_cascade.errors import ProviderInvocationError


class VisionOCREngine:
    """
    Plain text detection through Google Cloud Vision.

    Only raw text is returned; turning it into receipt fields is the job of
    the last-resort extractor.
    """

    name = "vision"

    def __init__(self, client: vision.ImageAnnotatorClient | None = None) -> None:
        """
        Initialize the engine.

        Args:
            client: Optional pre-configured ImageAnnotatorClient.
                   If None, a default client is created lazily on first use.
        """
        self._client = client
        self._client_initialized = client is not None
        self._client_lock = threading.Lock()

    @property
    def client(self) -> vision.ImageAnnotatorClient:
        """Lazily create the Vision client (double-checked under a lock)."""
        if not self._client_initialized:
            with self._client_lock:
                if not self._client_initialized:
                    self._client = vision.ImageAnnotatorClient()
                    self._client_initialized = True
        return self._client  # type: ignore[return-value]

    def extract_text(self, image: bytes) -> str:
        """
        Detect text in encoded image bytes.

        Returns:
            The full detected text, or an empty string if none was found

        Raises:
            ProviderInvocationError: If the Vision API call fails
        """
        # vision.Image accepts raw bytes despite the stubs
        request_image = vision.Image(content=image)  # type: ignore

        try:
            response = self.client.text_detection(image=request_image)  # type: ignore
        except google_exceptions.GoogleAPIError as e:
            raise ProviderInvocationError("Vision text detection failed", {"reason": str(e)}) from e

        if response.error.message:
            raise ProviderInvocationError(
                "Vision text detection failed", {"reason": response.error.message}
            )

        if response.text_annotations:
            # First annotation holds the entire detected text
            return response.text_annotations[0].description

        return ""
