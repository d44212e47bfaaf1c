"""Shared test fixtures for the dual-model extraction test suite."""

import json
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import pytest

from dualscan.backends import VisionBackend
from dualscan.constants import BACKEND_GEMINI, BACKEND_OPENAI
from dualscan.models import FieldDefinition, ImageUpload
from dualscan.services import Services, build_services

FORM_VALUES = {"fullName": "Ada Lovelace", "email": "ada@example.com"}

DETECTED_FIELDS = [
    {"name": "fullName", "label": "Full Name", "fieldType": "text", "required": True, "order": 1},
    {"name": "email", "label": "Email Address", "fieldType": "email", "required": True, "order": 2},
]


def extraction_reply(payload: Any, confidence: float = 0.9) -> str:
    """Render a conforming extraction envelope around a JSON payload."""
    return json.dumps({
        "text": json.dumps(payload),
        "confidence": confidence,
        "metadata": {"contentType": "form", "imageQuality": "good"},
    })


def merge_reply(payload: Any, score_a: float = 0.8, score_b: float = 0.7) -> str:
    """Render a conforming merge envelope around a JSON payload."""
    return json.dumps({
        "mergedText": json.dumps(payload),
        "analysis": {"sourceAScore": score_a, "sourceBScore": score_b, "reasoning": "consistent"},
    })


class FakeBackend(VisionBackend):
    """Backend with scripted replies that records every call it receives."""

    def __init__(
        self,
        name: str,
        image_reply: Optional[str] = None,
        text_reply: Optional[str] = None,
        failing_images: Iterable[bytes] = (),
        fail_text: bool = False,
        timeout: float = 5.0
    ) -> None:
        super().__init__(api_key="test-key", model_id=f"{name}-test", timeout=timeout, max_tokens=256)
        self.name = name
        self.image_reply = image_reply if image_reply is not None else extraction_reply(FORM_VALUES)
        self.text_reply = text_reply if text_reply is not None else merge_reply(FORM_VALUES)
        self.failing_images = set(failing_images)
        self.fail_text = fail_text
        self.image_calls: List[str] = []
        self.text_calls: List[str] = []
        self.closed = False

    async def _generate_from_image(self, image_bytes: bytes, mime_type: str, prompt: str) -> Optional[str]:
        self.image_calls.append(prompt)
        if image_bytes in self.failing_images:
            raise RuntimeError("provider unavailable")
        return self.image_reply

    async def _generate_text(self, prompt: str, system_prompt: Optional[str]) -> Optional[str]:
        self.text_calls.append(prompt)
        if self.fail_text:
            raise RuntimeError("quota exceeded")
        return self.text_reply

    async def close(self) -> None:
        self.closed = True


def make_image(marker: int = 0, filename: Optional[str] = None) -> ImageUpload:
    """Create a small PNG upload whose bytes are unique per marker."""
    content = b"\x89PNG\r\n\x1a\n" + bytes([marker % 256]) * 16
    return ImageUpload(
        filename=filename or f"document_{marker}.png",
        content=content,
        mime_type="image/png",
    )


@pytest.fixture
def fake_backends() -> Dict[str, FakeBackend]:
    """Return one scripted backend per provider."""
    return {
        BACKEND_GEMINI: FakeBackend(BACKEND_GEMINI),
        BACKEND_OPENAI: FakeBackend(BACKEND_OPENAI),
    }


@pytest.fixture
def services(fake_backends: Dict[str, FakeBackend], tmp_path: Path) -> Services:
    """Build the service graph over the scripted backends."""
    return build_services(backends=fake_backends, upload_dir=tmp_path / "uploads")


@pytest.fixture
def owner_id() -> int:
    return 1


@pytest.fixture
def form_fields() -> List[FieldDefinition]:
    """Return the field list of a simple contact form."""
    return [FieldDefinition.from_dict(item) for item in DETECTED_FIELDS]


@pytest.fixture
def ready_template(services: Services, owner_id: int, form_fields: List[FieldDefinition]) -> int:
    """Create a template with saved fields and return its id."""
    template = services.templates.create_template(owner_id, "Contact form")
    services.templates.save_fields(owner_id, template.id, form_fields)
    return template.id


@pytest.fixture
def image_factory() -> Callable[..., ImageUpload]:
    return make_image


@pytest.fixture
def replies() -> Dict[str, Callable[..., str]]:
    """Return the reply builders for scripting backends."""
    return {"extraction": extraction_reply, "merge": merge_reply}
