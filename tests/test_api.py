import asyncio

import pytest
from fastapi.testclient import TestClient
from fakes import FakeBackend, product

from app import api_server
from smartpick_assistant.service import ShoppingAssistantService

_BAGS = [
    product(
        "Black Leather Tote Bag",
        price=1899,
        image="http://img.test/tote.jpg",
        url="http://shop.test/tote",
        rating=4.5,
    )
]


@pytest.fixture
def backend():
    return FakeBackend(
        vision={"detected_items": [{"category": "bags", "subtype": "tote", "attributes": {"color": "black"}}]},
        recommendations=_BAGS,
    )


@pytest.fixture
def client(monkeypatch, backend):
    monkeypatch.setattr(api_server, "service", ShoppingAssistantService(backend=backend, groq=None))
    return TestClient(api_server.app)


def test_health(client) -> None:
    response = client.get("/api/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["app"] == "smartpick-assistant"
    assert body["stats"]["backend_base_url"] == "http://backend.test/api"


def test_resolve_requires_text_or_image(client) -> None:
    response = client.post("/api/resolve", json={})
    assert response.status_code == 400


def test_resolve_text_query(client) -> None:
    response = client.post("/api/resolve", json={"query": "black tote bag"})

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["products"][0]["title"] == "Black Leather Tote Bag"
    assert body["meta"]["requested_type"] == "bag"


def test_search_rejects_blank_query(client) -> None:
    assert client.post("/api/search", json={"query": ""}).status_code == 422
    assert client.post("/api/search", json={"query": "   "}).status_code == 400


def test_image_match_upload(client, backend) -> None:
    response = client.post(
        "/api/image-match",
        files={"image": ("tote.png", b"\x89PNG\r\n", "image/png")},
        data={"strict_mode": "true"},
    )

    assert response.status_code == 200
    assert response.json()["meta"]["mode"] == "image"
    assert backend.calls[0]["body"]["image"].startswith("data:image/png;base64,")


def test_image_match_rejects_bad_uploads(client) -> None:
    empty = client.post("/api/image-match", files={"image": ("tote.png", b"", "image/png")})
    assert empty.status_code == 400

    not_an_image = client.post("/api/image-match", files={"image": ("notes.txt", b"hello", "text/plain")})
    assert not_an_image.status_code == 400


def test_image_match_resolves_off_the_event_loop(client, monkeypatch) -> None:
    seen = {}

    def search_by_image(**kwargs):
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            seen["on_event_loop"] = False
        else:
            seen["on_event_loop"] = True
        seen["filename"] = kwargs["filename"]
        return {"status": "ok", "message": "", "products": [], "meta": {}}

    monkeypatch.setattr(api_server.service, "search_by_image", search_by_image)

    response = client.post("/api/image-match", files={"image": ("tote.png", b"\x89PNG\r\n", "image/png")})

    assert response.status_code == 200
    assert seen == {"on_event_loop": False, "filename": "tote.png"}
