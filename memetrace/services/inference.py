"""
Gemini inference client shared by every pipeline stage.
One call sends a prompt (and optionally the uploaded image) and returns the raw response text.
"""

import asyncio
import base64
import time
import structlog
from typing import List, Optional

from google import genai
from google.genai import types

from memetrace import config
from memetrace.models.media import MediaPayload
from .errors import InferenceError, StageError

__all__ = ["GeminiClient", "SAFETY_SETTINGS", "call_stage_model"]

logger = structlog.get_logger()

SAFETY_SETTINGS: List[types.SafetySetting] = [
    types.SafetySetting(
        category=category,
        threshold=types.HarmBlockThreshold.BLOCK_MEDIUM_AND_ABOVE,
    )
    for category in (
        types.HarmCategory.HARM_CATEGORY_HARASSMENT,
        types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
        types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
        types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
    )
]

class GeminiClient:
    """Thin async wrapper around the google-genai SDK with a per-call timeout."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        temperature: Optional[float] = None,
    ):
        self.api_key = api_key if api_key is not None else config.GOOGLE_AI_API_KEY
        self.model = model or config.GEMINI_MODEL
        self.timeout = timeout if timeout is not None else config.STAGE_TIMEOUT_SECONDS
        self.temperature = temperature if temperature is not None else config.GEMINI_TEMPERATURE
        self._client = None

        if self.api_key:
            self._client = genai.Client(api_key=self.api_key)
            logger.info("Gemini client initialized", model=self.model, timeout_s=self.timeout)
        else:
            logger.warning("GOOGLE_AI_API_KEY is not set - inference calls will fail", model=self.model)

    @classmethod
    def from_env(cls) -> "GeminiClient":
        return cls()

    @property
    def configured(self) -> bool:
        return self._client is not None

    def _generation_config(self) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            temperature=self.temperature,
            safety_settings=SAFETY_SETTINGS,
        )

    async def generate(self, prompt: str, media: Optional[MediaPayload] = None) -> str:
        """
        Run one model call and return the response text.

        Raises:
            InferenceError: the call failed or exceeded the timeout
        """
        if self._client is None:
            raise InferenceError("Gemini client is not configured (GOOGLE_AI_API_KEY missing)")

        start = time.perf_counter()
        try:
            contents: list = [prompt]
            if media is not None:
                contents.append(
                    types.Part.from_bytes(
                        data=base64.b64decode(media.data),
                        mime_type=media.mime_type,
                    )
                )

            response = await asyncio.wait_for(
                self._client.aio.models.generate_content(
                    model=self.model,
                    contents=contents,
                    config=self._generation_config(),
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error("Model call timed out", model=self.model, timeout_s=self.timeout)
            raise InferenceError(f"Model call timed out after {self.timeout:g}s") from e
        except Exception as e:
            logger.error("Model call failed", model=self.model, error=str(e))
            raise InferenceError(f"Model call failed: {str(e)}") from e

        text = response.text or ""
        logger.debug("Model call completed",
                    model=self.model,
                    with_media=media is not None,
                    latency_ms=int((time.perf_counter() - start) * 1000),
                    response_chars=len(text))
        return text

async def call_stage_model(
    client: GeminiClient,
    stage: str,
    prompt: str,
    media: Optional[MediaPayload] = None,
) -> str:
    """Run a stage's single inference call; any failure is fatal for that stage."""
    try:
        return await client.generate(prompt, media=media)
    except Exception as e:
        logger.error("Stage inference call failed", stage=stage, error=str(e))
        raise StageError(stage, e) from e
