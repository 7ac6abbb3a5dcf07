"""HTTP helpers for the SmartPick intent/vision and recommendation backend."""

from __future__ import annotations

import http.client
import json
import logging
import os
import time
from dataclasses import dataclass
from typing import Any
import urllib.error
import urllib.parse
import urllib.request

from smartpick_assistant.errors import UpstreamError


_LOGGER = logging.getLogger(__name__)

MIN_TIMEOUT_SECONDS = 60.0
_TRANSIENT_STATUSES = {408, 409, 429, 500, 502, 503, 504}


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


def _strip_api_suffix(base_url: str) -> str:
    trimmed = base_url.rstrip("/")
    if trimmed.endswith("/api"):
        return trimmed[: -len("/api")]
    return trimmed


@dataclass(frozen=True)
class BackendConfig:
    base_url: str
    fallback_base_url: str
    recommendations_path: str
    vision_search_path: str
    timeout_seconds: float
    max_retries: int
    api_token: str

    @classmethod
    def from_env(cls) -> "BackendConfig":
        base_url = os.getenv("SP_API_BASE_URL", "").strip() or "http://localhost:5000/api"
        return cls(
            base_url=base_url,
            fallback_base_url=os.getenv("SP_API_FALLBACK_BASE_URL", "").strip() or _strip_api_suffix(base_url),
            recommendations_path=os.getenv("SP_RECOMMENDATIONS_PATH", "").strip() or "/recommendations",
            vision_search_path=os.getenv("SP_VISION_SEARCH_PATH", "").strip() or "/vision/search-by-image",
            timeout_seconds=max(MIN_TIMEOUT_SECONDS, _env_float("SP_API_TIMEOUT_SECONDS", MIN_TIMEOUT_SECONDS)),
            max_retries=_env_int("SP_API_MAX_RETRIES", 1),
            api_token=os.getenv("SP_API_TOKEN", "").strip(),
        )


class BackendClient:
    def __init__(
        self,
        *,
        base_url: str,
        fallback_base_url: str = "",
        timeout_seconds: float = MIN_TIMEOUT_SECONDS,
        max_retries: int = 1,
        api_token: str = "",
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.fallback_base_url = (fallback_base_url or _strip_api_suffix(base_url)).rstrip("/")
        self.timeout_seconds = max(1.0, float(timeout_seconds))
        self.max_retries = max(0, int(max_retries))
        self.api_token = api_token

    def _build_request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None,
        body: dict[str, Any] | None,
    ) -> urllib.request.Request:
        if params:
            url = f"{url}?{urllib.parse.urlencode(params)}"
        headers = {"Accept": "application/json"}
        data = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if self.api_token:
            headers["Authorization"] = f"Bearer {self.api_token}"
        return urllib.request.Request(url, data=data, headers=headers, method=method.upper())

    def request_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
        base_url: str | None = None,
    ) -> Any:
        """Send one request and decode the JSON reply (``None`` for an empty or non-JSON body).

        Transient statuses are retried with backoff; everything else raises
        :class:`UpstreamError` carrying the HTTP status, or 0 for network failures.
        """
        root = (base_url or self.base_url).rstrip("/")
        request = self._build_request(method, f"{root}{path}", params, body)

        for attempt in range(self.max_retries + 1):
            try:
                with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                    raw = response.read().decode("utf-8", errors="ignore")
                break
            except urllib.error.HTTPError as exc:
                response_body = exc.read().decode("utf-8", errors="ignore")
                if exc.code in _TRANSIENT_STATUSES and attempt < self.max_retries:
                    time.sleep(0.4 * (2**attempt))
                    continue
                raise UpstreamError(
                    f"Backend request failed ({exc.code}) at {path}: {response_body[:200] or exc.reason}",
                    status=exc.code,
                    path=path,
                ) from exc
            except (http.client.HTTPException, OSError) as exc:
                if attempt < self.max_retries:
                    time.sleep(0.4 * (2**attempt))
                    continue
                reason = getattr(exc, "reason", exc)
                raise UpstreamError(f"Backend request failed at {path}: {reason}", status=0, path=path) from exc

        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            _LOGGER.warning("Backend returned a non-JSON body at %s.", path)
            return None


def make_client(config: BackendConfig | None = None) -> BackendClient:
    config = config or BackendConfig.from_env()
    return BackendClient(
        base_url=config.base_url,
        fallback_base_url=config.fallback_base_url,
        timeout_seconds=config.timeout_seconds,
        max_retries=config.max_retries,
        api_token=config.api_token,
    )


def search_by_image(
    client: BackendClient,
    *,
    image_data_url: str,
    text_hint: str,
    top_k: int,
    strict_category: bool,
    path: str = "/vision/search-by-image",
) -> dict[str, Any] | None:
    """Call the intent/vision endpoint. Returns ``None`` when the backend does not offer it (404/501)."""
    if not image_data_url:
        return None
    payload = {
        "image": image_data_url,
        "text_hint": text_hint,
        "top_k": int(top_k),
        "strict_category": bool(strict_category),
    }
    try:
        response = client.request_json("POST", path, body=payload)
    except UpstreamError as exc:
        if exc.status in (404, 501):
            _LOGGER.warning("Vision search endpoint is not available (%s).", exc.status)
            return None
        raise
    return response if isinstance(response, dict) else {}
