import http.client

import pytest
from fakes import IMAGE_DATA_URL, FakeGroq

from smartpick_assistant import groq_utils
from smartpick_assistant.groq_utils import (
    DEFAULT_GROQ_VISION_MODEL,
    GroqClient,
    GroqConfig,
    _extract_json_block,
    analyze_image_attributes,
    make_client,
    parse_vision_fallback,
)


def test_config_defaults_and_missing_key() -> None:
    config = GroqConfig.from_env()
    assert config.api_key == ""
    assert config.vision_model == DEFAULT_GROQ_VISION_MODEL
    assert make_client(config) is None


def test_make_client_with_key(monkeypatch) -> None:
    monkeypatch.setenv("GROQ_API_KEY", "gsk_test")
    monkeypatch.setenv("SP_GROQ_VISION_MODEL", "custom-vision")
    monkeypatch.setenv("SP_GROQ_TIMEOUT_SECONDS", "12")
    monkeypatch.setenv("SP_GROQ_MAX_RETRIES", "often")

    config = GroqConfig.from_env()
    client = make_client(config)

    assert isinstance(client, GroqClient)
    assert config.vision_model == "custom-vision"
    assert config.timeout_seconds == 12.0
    assert config.max_retries == 1


def test_extract_json_block_handles_fences_and_prose() -> None:
    assert _extract_json_block('```json\n{"type": "bag"}\n```') == {"type": "bag"}
    assert _extract_json_block('Sure! {"type": "bag"} hope this helps') == {"type": "bag"}
    with pytest.raises(ValueError):
        _extract_json_block("no json here")
    with pytest.raises(ValueError):
        _extract_json_block("")


def test_extract_message_text() -> None:
    payload = {"choices": [{"message": {"content": '  {"type": "bag"} '}}]}
    assert GroqClient._extract_message_text(payload) == '{"type": "bag"}'
    assert GroqClient._extract_message_text({"choices": []}) == ""
    assert GroqClient._extract_message_text([{"choices": []}]) == ""


def test_parse_vision_fallback_drops_generic_labels() -> None:
    fallback = parse_vision_fallback(
        {
            "type": "product",
            "category": "footwear",
            "color": " White ",
            "confidence": "0.7",
            "search_query": "white\nsneakers",
            "include_keywords": ["white", "", "sneakers"],
        }
    )
    assert fallback.type == ""
    assert fallback.category == "footwear"
    assert fallback.color == "White"
    assert fallback.confidence == 0.7
    assert fallback.search_query == "white sneakers"
    assert fallback.include_keywords == ["white", "sneakers"]


def test_analyze_image_attributes_calls_client() -> None:
    groq = FakeGroq({"type": "sneaker", "color": "white"})

    fallback = analyze_image_attributes(groq, image_data_url=IMAGE_DATA_URL, text_hint="gym", model="m")

    assert fallback.type == "sneaker"
    assert groq.calls[0]["image_data_url"] == IMAGE_DATA_URL
    assert groq.calls[0]["user_text"] == "User hint: gym"
    assert groq.calls[0]["model"] == "m"


def test_analyze_image_attributes_swallows_provider_failures() -> None:
    assert analyze_image_attributes(None, image_data_url=IMAGE_DATA_URL) is None
    assert analyze_image_attributes(FakeGroq(RuntimeError("429")), image_data_url=IMAGE_DATA_URL) is None
    assert analyze_image_attributes(FakeGroq(ValueError("bad json")), image_data_url=IMAGE_DATA_URL) is None


class _Response:
    def __init__(self, body: bytes) -> None:
        self._body = body

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        return None


def _client() -> GroqClient:
    return GroqClient(api_key="gsk_test", base_url="http://groq.test/openai/v1", timeout_seconds=5, max_retries=0)


def test_dropped_connection_disables_fallback(monkeypatch) -> None:
    def fake_urlopen(request, timeout):
        raise http.client.RemoteDisconnected("Remote end closed connection without response")

    monkeypatch.setattr(groq_utils.urllib.request, "urlopen", fake_urlopen)

    with pytest.raises(RuntimeError):
        _client().chat_image_json(system_prompt="s", user_text="u", image_data_url=IMAGE_DATA_URL, model="m")
    assert analyze_image_attributes(_client(), image_data_url=IMAGE_DATA_URL) is None


def test_list_body_disables_fallback(monkeypatch) -> None:
    monkeypatch.setattr(groq_utils.urllib.request, "urlopen", lambda request, timeout: _Response(b'[{"choices": []}]'))

    assert analyze_image_attributes(_client(), image_data_url=IMAGE_DATA_URL) is None
