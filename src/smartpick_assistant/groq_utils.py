"""Groq chat-completions client used as the secondary image-attribute detector."""

from __future__ import annotations

import http.client
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any
import urllib.error
import urllib.request

from smartpick_assistant.taxonomy import DEFAULT_TAXONOMY
from smartpick_assistant.text import sanitize_search_query


_LOGGER = logging.getLogger(__name__)

DEFAULT_GROQ_BASE_URL = "https://api.groq.com/openai/v1"
DEFAULT_GROQ_VISION_MODEL = "meta-llama/llama-4-scout-17b-16e-instruct"

_VISION_FALLBACK_PROMPT = (
    "Analyze the product in the image for ecommerce search. Return only JSON with keys: "
    "type, category, color, gender, pattern, material, style, sleeve, neckline, fit, confidence, "
    "search_query, include_keywords."
)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


@dataclass(frozen=True)
class GroqConfig:
    api_key: str
    base_url: str
    vision_model: str
    timeout_seconds: float
    max_retries: int

    @classmethod
    def from_env(cls) -> "GroqConfig":
        return cls(
            api_key=os.getenv("GROQ_API_KEY", "").strip(),
            base_url=os.getenv("GROQ_API_BASE_URL", "").strip() or DEFAULT_GROQ_BASE_URL,
            vision_model=os.getenv("SP_GROQ_VISION_MODEL", "").strip() or DEFAULT_GROQ_VISION_MODEL,
            timeout_seconds=_env_float("SP_GROQ_TIMEOUT_SECONDS", 30.0),
            max_retries=_env_int("SP_GROQ_MAX_RETRIES", 1),
        )


@dataclass(frozen=True)
class VisionFallback:
    """Attributes read off the image by the secondary model. Strings are trimmed but not normalized."""

    type: str = ""
    category: str = ""
    color: str = ""
    gender: str = ""
    pattern: str = ""
    material: str = ""
    style: str = ""
    sleeve: str = ""
    neckline: str = ""
    fit: str = ""
    confidence: float = 0.0
    search_query: str = ""
    include_keywords: list[str] = field(default_factory=list)
    provider: str = "groq-vision-fallback"


class GroqClient:
    def __init__(self, *, api_key: str, base_url: str, timeout_seconds: float, max_retries: int) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = max(1.0, float(timeout_seconds))
        self.max_retries = max(0, int(max_retries))

    def _post_json(self, path: str, payload: dict[str, Any]) -> Any:
        body = json.dumps(payload).encode("utf-8")
        request = urllib.request.Request(
            f"{self.base_url}{path}",
            data=body,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                    return json.loads(response.read().decode("utf-8"))
            except urllib.error.HTTPError as exc:
                response_body = exc.read().decode("utf-8", errors="ignore")
                retryable = exc.code in {408, 409, 429, 500, 502, 503, 504}
                if retryable and attempt < self.max_retries:
                    time.sleep(0.4 * (2**attempt))
                    continue
                raise RuntimeError(
                    f"Groq request failed ({exc.code}) at {path}: {response_body or exc.reason}"
                ) from exc
            except (http.client.HTTPException, OSError) as exc:
                last_error = exc
                if attempt < self.max_retries:
                    time.sleep(0.4 * (2**attempt))
                    continue
                raise RuntimeError(f"Groq request failed at {path}: {getattr(exc, 'reason', exc)}") from exc

        raise RuntimeError(f"Groq request failed at {path}: {last_error}")

    @staticmethod
    def _extract_message_text(payload: Any) -> str:
        if not isinstance(payload, dict):
            return ""
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            return ""
        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        if not isinstance(message, dict):
            return ""
        content = message.get("content")
        return content.strip() if isinstance(content, str) else ""

    def chat_image_json(
        self,
        *,
        system_prompt: str,
        user_text: str,
        image_data_url: str,
        model: str,
        temperature: float = 0.1,
    ) -> dict[str, Any]:
        payload = {
            "model": model,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": system_prompt},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": user_text},
                        {"type": "image_url", "image_url": {"url": image_data_url}},
                    ],
                },
            ],
        }
        response = self._post_json("/chat/completions", payload)
        return _extract_json_block(self._extract_message_text(response))


def _extract_json_block(text: str) -> dict[str, Any]:
    raw = (text or "").strip()
    if not raw:
        raise ValueError("Model returned an empty response.")

    if raw.startswith("```"):
        first_newline = raw.find("\n")
        last_fence = raw.rfind("```")
        if first_newline != -1 and last_fence > first_newline:
            raw = raw[first_newline:last_fence].strip()

    candidates = [raw]
    start = raw.find("{")
    end = raw.rfind("}")
    if start != -1 and end > start:
        candidates.append(raw[start : end + 1])

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed

    raise ValueError(f"Could not parse JSON object from model response: {text[:200]}")


def make_client(config: GroqConfig | None = None) -> GroqClient | None:
    """Build a client, or return ``None`` when no API key is configured (the fallback is then disabled)."""
    config = config or GroqConfig.from_env()
    if not config.api_key:
        return None
    return GroqClient(
        api_key=config.api_key,
        base_url=config.base_url,
        timeout_seconds=config.timeout_seconds,
        max_retries=config.max_retries,
    )


def _text(value: Any) -> str:
    return str(value or "").strip()


def _confidence(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def parse_vision_fallback(parsed: dict[str, Any]) -> VisionFallback:
    keywords = parsed.get("include_keywords")
    include_keywords = [_text(value) for value in keywords if _text(value)][:10] if isinstance(keywords, list) else []
    return VisionFallback(
        type=DEFAULT_TAXONOMY.sanitize_vision_label(parsed.get("type")),
        category=DEFAULT_TAXONOMY.sanitize_vision_label(parsed.get("category")),
        color=_text(parsed.get("color")),
        gender=_text(parsed.get("gender")),
        pattern=_text(parsed.get("pattern")),
        material=_text(parsed.get("material")),
        style=_text(parsed.get("style")),
        sleeve=_text(parsed.get("sleeve")),
        neckline=_text(parsed.get("neckline")),
        fit=_text(parsed.get("fit")),
        confidence=_confidence(parsed.get("confidence")),
        search_query=sanitize_search_query(parsed.get("search_query")),
        include_keywords=include_keywords,
    )


def analyze_image_attributes(
    client: GroqClient | None,
    *,
    image_data_url: str,
    text_hint: str = "",
    model: str = DEFAULT_GROQ_VISION_MODEL,
) -> VisionFallback | None:
    """Ask the secondary vision model for product attributes. Any failure yields ``None``."""
    if client is None or not image_data_url:
        return None
    try:
        parsed = client.chat_image_json(
            system_prompt=_VISION_FALLBACK_PROMPT,
            user_text=f"User hint: {text_hint.strip() or 'none'}",
            image_data_url=image_data_url,
            model=model,
        )
    except (RuntimeError, ValueError) as exc:
        _LOGGER.warning("Groq vision fallback failed: %s", exc)
        return None
    return parse_vision_fallback(parsed)
