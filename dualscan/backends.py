"""Extraction backend adapters for the Gemini and OpenAI vision models."""
import asyncio
import base64
import logging
from typing import Any, Awaitable, Dict, Optional

from google import genai
from google.genai import types
from openai import AsyncOpenAI

from dualscan.config import Config, config
from dualscan.constants import (
    ALLOWED_IMAGE_TYPES,
    BACKEND_GEMINI,
    BACKEND_OPENAI,
    ENV_GEMINI_KEY,
    ENV_OPENAI_KEY,
)
from dualscan.envelope import parse_extraction
from dualscan.exceptions import ExtractionBackendError
from dualscan.models import StructuredExtraction
from dualscan.prompts import with_extraction_envelope

logger = logging.getLogger(__name__)


class VisionBackend:
    """
    Adapter turning an image and an instruction into a ``StructuredExtraction``.

    Subclasses implement the two raw provider calls. This class owns the
    contract around them: one attempt per call (no retries), a hard timeout,
    every provider failure surfaced as ``ExtractionBackendError`` and every
    reply coerced into the extraction envelope. Adapters hold no per-call
    state and may be invoked concurrently.
    """

    name = ""
    api_key_env = ""

    def __init__(
        self,
        api_key: Optional[str],
        model_id: str,
        timeout: float,
        max_tokens: int
    ) -> None:
        self.api_key = api_key
        self.model_id = model_id
        self.timeout = timeout
        self.max_tokens = max_tokens

    async def extract(
        self,
        image_bytes: bytes,
        mime_type: str,
        instruction: str
    ) -> StructuredExtraction:
        """
        Run an extraction instruction against an image.

        Args:
            image_bytes: Raw image content
            mime_type: Image MIME type (must be allow-listed)
            instruction: What to extract and in which shape

        Returns:
            StructuredExtraction envelope (degraded when the reply does not conform)

        Raises:
            ExtractionBackendError: If the provider call fails or times out
        """
        if mime_type not in ALLOWED_IMAGE_TYPES:
            raise ExtractionBackendError(self.name, f"Unsupported image type: {mime_type}")

        logger.debug(f"{self.name}: extracting from {len(image_bytes)} bytes ({mime_type})")
        raw = await self._invoke(
            self._generate_from_image(image_bytes, mime_type, with_extraction_envelope(instruction))
        )
        return parse_extraction(raw, self.name)

    async def generate(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        """
        Run a text-only prompt, as used when this backend acts as arbiter.

        Raises:
            ExtractionBackendError: If the provider call fails or times out
        """
        return await self._invoke(self._generate_text(prompt, system_prompt))

    async def close(self) -> None:
        """Release provider resources."""

    async def _invoke(self, call: Awaitable[Optional[str]]) -> str:
        try:
            raw = await asyncio.wait_for(call, timeout=self.timeout)
        except ExtractionBackendError:
            raise
        except asyncio.TimeoutError as e:
            logger.error(f"{self.name} call timed out after {self.timeout:g}s")
            raise ExtractionBackendError(self.name, f"Timed out after {self.timeout:g}s") from e
        except Exception as e:
            logger.error(f"{self.name} call failed: {str(e)}")
            raise ExtractionBackendError(self.name, str(e)) from e
        return raw or ""

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise ExtractionBackendError(
                self.name,
                f"{self.api_key_env} environment variable is not set"
            )
        return self.api_key

    async def _generate_from_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        prompt: str
    ) -> Optional[str]:
        raise NotImplementedError

    async def _generate_text(self, prompt: str, system_prompt: Optional[str]) -> Optional[str]:
        raise NotImplementedError


class GeminiBackend(VisionBackend):
    """Gemini adapter using the google-genai async client."""

    name = BACKEND_GEMINI
    api_key_env = ENV_GEMINI_KEY

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._client: Optional[genai.Client] = None

    def _get_client(self) -> genai.Client:
        if self._client is None:
            self._client = genai.Client(api_key=self._require_api_key())
        return self._client

    def _config(self, system_prompt: Optional[str] = None) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            response_mime_type="application/json",
            max_output_tokens=self.max_tokens,
            system_instruction=system_prompt,
        )

    async def _generate_from_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        prompt: str
    ) -> Optional[str]:
        response = await self._get_client().aio.models.generate_content(
            model=self.model_id,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type=mime_type),
                prompt,
            ],
            config=self._config(),
        )
        return response.text

    async def _generate_text(self, prompt: str, system_prompt: Optional[str]) -> Optional[str]:
        response = await self._get_client().aio.models.generate_content(
            model=self.model_id,
            contents=prompt,
            config=self._config(system_prompt),
        )
        return response.text


class OpenAIBackend(VisionBackend):
    """OpenAI adapter using chat completions with JSON output."""

    name = BACKEND_OPENAI
    api_key_env = ENV_OPENAI_KEY

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._client: Optional[AsyncOpenAI] = None

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            # Retries are disabled; one attempt per call
            self._client = AsyncOpenAI(
                api_key=self._require_api_key(),
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    async def _complete(self, messages: list) -> Optional[str]:
        completion = await self._get_client().chat.completions.create(
            model=self.model_id,
            messages=messages,
            response_format={"type": "json_object"},
            max_tokens=self.max_tokens,
        )
        if not completion.choices:
            return None
        return completion.choices[0].message.content

    async def _generate_from_image(
        self,
        image_bytes: bytes,
        mime_type: str,
        prompt: str
    ) -> Optional[str]:
        encoded = base64.b64encode(image_bytes).decode("ascii")
        return await self._complete([
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}},
                ],
            },
        ])

    async def _generate_text(self, prompt: str, system_prompt: Optional[str]) -> Optional[str]:
        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})
        return await self._complete(messages)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


class BackendFactory:
    """Factory for the backend adapters, built once at process start."""

    @staticmethod
    def create_backends(settings: Optional[Config] = None) -> Dict[str, VisionBackend]:
        """
        Create one adapter per configured provider.

        Missing credentials are logged here and reported as
        ``ExtractionBackendError`` on the first call to that backend.

        Args:
            settings: Configuration to read (defaults to the global config)

        Returns:
            Mapping of backend identifier to adapter
        """
        settings = settings or config
        for backend in (BACKEND_GEMINI, BACKEND_OPENAI):
            is_valid, error_message = settings.validate_backend_credentials(backend)
            if not is_valid:
                logger.warning(error_message)

        return {
            BACKEND_GEMINI: GeminiBackend(
                api_key=settings.gemini_api_key,
                model_id=settings.gemini_model_id,
                timeout=settings.backend_timeout,
                max_tokens=settings.backend_max_tokens,
            ),
            BACKEND_OPENAI: OpenAIBackend(
                api_key=settings.openai_api_key,
                model_id=settings.openai_model_id,
                timeout=settings.backend_timeout,
                max_tokens=settings.backend_max_tokens,
            ),
        }
