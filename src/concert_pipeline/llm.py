import json
import logging
from typing import Any, List, Optional, Sequence

from google import genai
from google.genai import errors, types

from .config import Config
from .retry import RateLimitError, with_retry

_BRACKETS = {"{": "}", "[": "]"}


class GeminiClient:
    """Thin wrapper around ``google-genai`` that returns plain response text.

    Images are sent inline as JPEG parts ahead of the trailing instruction
    text. Every call goes through the shared retry policy.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        vision_model: Optional[str] = None,
        client: Optional[genai.Client] = None,
    ):
        self.api_key = api_key or Config.GEMINI_API_KEY
        self.model = model or Config.GEMINI_MODEL
        self.vision_model = vision_model or Config.GEMINI_VISION_MODEL
        self._client = client

    def _get_client(self) -> genai.Client:
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("GEMINI_API_KEY not set.")
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    def generate(
        self,
        system: str,
        text: str,
        images: Sequence[bytes] = (),
        max_output_tokens: int = 1024,
    ) -> str:
        config = types.GenerateContentConfig(
            temperature=0,
            maxOutputTokens=max_output_tokens,
            systemInstruction=system,
        )
        contents: List[Any] = [
            types.Part.from_bytes(data=image, mime_type="image/jpeg") for image in images
        ]
        contents.append(text)
        model = self.vision_model if images else self.model

        def _call() -> str:
            try:
                response = self._get_client().models.generate_content(
                    model=model,
                    contents=contents,
                    config=config,
                )
            except errors.ClientError as exc:
                status = getattr(exc, "status", "") or ""
                message = str(exc)
                if status == "RESOURCE_EXHAUSTED" or "quota" in message.lower():
                    raise RateLimitError(message) from exc
                raise
            return (response.text or "").strip()

        return with_retry(_call, label=f"Gemini {model}")


def extract_json_span(text: str, opener: str = "{") -> Optional[str]:
    """Return the outermost ``{...}`` (or ``[...]``) span of ``text``, if any."""
    closer = _BRACKETS[opener]
    if not text:
        return None
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def load_json_span(text: str, opener: str = "{") -> Optional[Any]:
    """Parse the JSON span embedded in a model reply; ``None`` when there is none."""
    snippet = extract_json_span(text, opener)
    if snippet is None:
        logging.warning(f"No JSON found in model output: {(text or '')[:100]}")
        return None
    try:
        return json.loads(snippet)
    except json.JSONDecodeError as exc:
        logging.warning(f"Invalid JSON in model output ({exc}): {snippet[:100]}")
        return None
