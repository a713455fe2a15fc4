"""
Comic Strip - Gemini provider client.

Talks to the Google Generative Language REST API with httpx:
- generateContent (Gemini) for schema-constrained panel prompt synthesis
- predict (Imagen) for panel images

The pipeline only depends on the two-call ComicProvider interface below,
so tests (and other providers) can stand in for GeminiClient.
"""

import base64
import binascii
import logging
from typing import Optional, Protocol, Sequence

import httpx

from comic_strip import config
from comic_strip.errors import UpstreamError
from comic_strip.models import CharacterImage

logger = logging.getLogger(__name__)


class ComicProvider(Protocol):
    """Capabilities the synthesizer and renderer need from a model provider."""

    async def synthesize_text(
        self,
        prompt: str,
        images: Sequence[CharacterImage],
        response_mime_type: str,
        response_schema: dict,
    ) -> str:
        ...

    async def generate_image(
        self,
        prompt: str,
        number_of_images: int,
        output_mime_type: str,
        aspect_ratio: str,
    ) -> list[bytes]:
        ...


class GeminiClient:
    """ComicProvider backed by Gemini (text/vision) and Imagen (images)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        text_model: Optional[str] = None,
        image_model: Optional[str] = None,
        timeout: Optional[float] = None,
        base_url: str = config.GEMINI_API_BASE,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key or config.GOOGLE_API_KEY
        if not self.api_key:
            logger.warning("GOOGLE_API_KEY not set, comic generation will fail")
        self.text_model = text_model or config.TEXT_MODEL
        self.image_model = image_model or config.IMAGE_MODEL
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        # One client per call keeps the provider usable from any event loop
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout, connect=30.0),
            transport=self._transport,
        )

    async def synthesize_text(
        self,
        prompt: str,
        images: Sequence[CharacterImage],
        response_mime_type: str = "application/json",
        response_schema: Optional[dict] = None,
    ) -> str:
        """
        Send one instruction plus inline reference images to Gemini.

        Returns:
            The concatenated text of the first candidate.
        """
        parts = [{"text": prompt}]
        for image in images:
            parts.append({
                "inline_data": {
                    "mime_type": image.mime_type,
                    "data": image.to_base64(),
                }
            })

        generation_config = {"responseMimeType": response_mime_type}
        if response_schema is not None:
            generation_config["responseSchema"] = response_schema

        payload = {
            "contents": [{"parts": parts}],
            "generationConfig": generation_config,
        }

        url = f"{self.base_url}/models/{self.text_model}:generateContent"
        logger.info(f"Gemini {self.text_model}: synthesizing with {len(images)} reference image(s)")
        result = await self._post(url, payload)

        candidates = result.get("candidates") or []
        if not candidates:
            reason = (result.get("promptFeedback") or {}).get("blockReason", "no candidates")
            raise UpstreamError(f"Gemini returned no response ({reason}).")

        content_parts = (candidates[0].get("content") or {}).get("parts") or []
        text = "".join(p.get("text", "") for p in content_parts).strip()
        if not text:
            finish = candidates[0].get("finishReason", "unknown")
            raise UpstreamError(f"Gemini returned an empty response (finish reason: {finish}).")
        return text

    async def generate_image(
        self,
        prompt: str,
        number_of_images: int = 1,
        output_mime_type: str = "image/jpeg",
        aspect_ratio: str = "16:9",
    ) -> list[bytes]:
        """
        Generate images with Imagen.

        Returns:
            Decoded image payloads. Filtered images are left out, so the
            list can be shorter than number_of_images (or empty).
        """
        payload = {
            "instances": [{"prompt": prompt}],
            "parameters": {
                "sampleCount": number_of_images,
                "aspectRatio": aspect_ratio,
                "outputOptions": {"mimeType": output_mime_type},
            },
        }

        url = f"{self.base_url}/models/{self.image_model}:predict"
        result = await self._post(url, payload)

        images = []
        for prediction in result.get("predictions") or []:
            encoded = prediction.get("bytesBase64Encoded")
            if not encoded:
                if prediction.get("raiFilteredReason"):
                    logger.warning(f"Imagen filtered an image: {prediction['raiFilteredReason']}")
                continue
            try:
                images.append(base64.b64decode(encoded))
            except (binascii.Error, ValueError) as e:
                raise UpstreamError(f"Imagen returned undecodable image data: {e}")
        return images

    async def _post(self, url: str, payload: dict) -> dict:
        """POST JSON with the API key and return the decoded body."""
        try:
            async with self._client() as client:
                response = await client.post(
                    url,
                    json=payload,
                    params={"key": self.api_key},
                )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Request to model provider failed: {e}")

        if response.status_code != 200:
            raise UpstreamError(
                f"Model provider error {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            raise UpstreamError("Model provider returned a non-JSON response.")
