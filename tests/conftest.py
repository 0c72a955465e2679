import io
import json

import pytest
from PIL import Image

from memetrace.models.media import DatasetRecord, MediaPayload
from memetrace.core.utils import encode_media

class FakeClient:
    """Stands in for GeminiClient; replays canned responses and records calls."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    async def generate(self, prompt, media=None):
        self.calls.append((prompt, media))
        if not self.responses:
            raise AssertionError("unexpected inference call")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

def fenced(payload) -> str:
    return "Here is the analysis:\n```json\n" + json.dumps(payload) + "\n```\nLet me know if you need more."

@pytest.fixture
def png_bytes():
    buffer = io.BytesIO()
    Image.new("RGB", (8, 6), color=(200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()

@pytest.fixture
def payload(png_bytes) -> MediaPayload:
    return encode_media(png_bytes, "image/png")

@pytest.fixture
def dataset():
    return [
        DatasetRecord(
            id=100 + i,
            creator_username=f"creator_{i}",
            upload_date=f"2024-01-0{i}T12:00:00",
            image_url=f"https://example.com/img/{i}.png",
            post_link=f"https://example.com/p/{i}",
            description=f"Meme number {i} about cats and coffee",
            created_at="2024-02-01T00:00:00",
        )
        for i in range(1, 6)
    ]

@pytest.fixture
def description_json():
    return {
        "description": "A cat staring at an empty coffee mug",
        "textContent": "MONDAY AGAIN",
        "visualElements": ["cat", "mug"],
        "theme": "Monday fatigue",
    }
