"""In-memory stand-ins for the SmartPick backend and the Groq vision client."""

import copy

VISION_PATH = "/vision/search-by-image"
RECOMMENDATIONS_PATH = "/recommendations"
IMAGE_DATA_URL = "data:image/png;base64,iVBORw0KGgo="


def _respond(source, argument):
    if isinstance(source, Exception):
        raise source
    if callable(source):
        return source(argument)
    return copy.deepcopy(source)


class FakeBackend:
    """Answers ``request_json`` from canned vision and recommendation replies.

    Either reply may be a value, a callable taking the vision body or the query
    string, or an exception instance to raise.
    """

    def __init__(self, *, vision=None, recommendations=None):
        self.base_url = "http://backend.test/api"
        self.fallback_base_url = "http://backend.test"
        self.vision = vision
        self.recommendations = [] if recommendations is None else recommendations
        self.calls = []

    def request_json(self, method, path, *, params=None, body=None, base_url=None):
        self.calls.append({"method": method, "path": path, "params": params, "body": body, "base_url": base_url})
        if path == VISION_PATH:
            return _respond(self.vision, body)
        payload = params or body or {}
        query = next(iter(payload.values()), "")
        return _respond(self.recommendations, query)

    def calls_to(self, path):
        return [call for call in self.calls if call["path"] == path]


class FakeGroq:
    def __init__(self, reply):
        self.reply = reply
        self.calls = []

    def chat_image_json(self, **kwargs):
        self.calls.append(kwargs)
        if isinstance(self.reply, Exception):
            raise self.reply
        return dict(self.reply)


def product(title, *, price=0, image="", url="", rating=0, **extra):
    row = {"title": title, "price": price, "image": image, "url": url, "rating": rating}
    row.update(extra)
    return row
