"""Tests for the FastAPI REST endpoints."""

import csv
import io
import time
from pathlib import Path
from typing import Dict, Iterator, List

import pytest
from fastapi.testclient import TestClient

from conftest import DETECTED_FIELDS, FakeBackend, extraction_reply, make_image, merge_reply
from dualscan.services import Services
from main import create_app

USER = {"X-User-Id": "1"}
OTHER_USER = {"X-User-Id": "2"}


@pytest.fixture
def client(services: Services) -> Iterator[TestClient]:
    """Create a test client whose event loop lives for the whole test."""
    with TestClient(create_app(services)) as test_client:
        yield test_client


def _image_file(marker: int, filename: str = "") -> tuple:
    image = make_image(marker, filename or None)
    return (image.filename, image.content, image.mime_type)


def _create_template(client: TestClient, name: str = "Contact form") -> dict:
    response = client.post("/api/templates", json={"name": name}, headers=USER)
    assert response.status_code == 201
    return response.json()


def _wait_for_results(client: TestClient, template_id: int, timeout: float = 5.0) -> List[dict]:
    deadline = time.monotonic() + timeout
    while True:
        results = client.get(f"/api/templates/{template_id}/results", headers=USER).json()
        if all(r["status"] != "processing" for r in results) or time.monotonic() > deadline:
            return results
        time.sleep(0.02)


class TestHealthEndpoint:
    """Tests for the /api/health endpoint."""

    def test_health_returns_ok(self, client: TestClient) -> None:
        response = client.get("/api/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestTemplateEndpoints:
    """Tests for template CRUD."""

    def test_missing_user_header(self, client: TestClient) -> None:
        assert client.get("/api/templates").status_code == 401
        assert client.get("/api/templates", headers={"X-User-Id": "abc"}).status_code == 401

    def test_create_get_update_delete(self, client: TestClient) -> None:
        created = _create_template(client)
        assert created["status"] == "drafting"
        template_id = created["id"]

        response = client.put(
            f"/api/templates/{template_id}",
            json={"name": "Contact", "description": "Front desk", "custom_prompt": "Keep casing."},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["custom_prompt"] == "Keep casing."

        listed = client.get("/api/templates", headers=USER).json()
        assert [t["name"] for t in listed] == ["Contact"]

        assert client.delete(f"/api/templates/{template_id}", headers=USER).status_code == 204
        assert client.get(f"/api/templates/{template_id}", headers=USER).status_code == 404

    def test_blank_name_is_rejected(self, client: TestClient) -> None:
        response = client.post("/api/templates", json={"name": " "}, headers=USER)
        assert response.status_code == 400
        assert response.json()["detail"] == "Name is required"

    def test_other_user_is_forbidden(self, client: TestClient) -> None:
        template_id = _create_template(client)["id"]
        assert client.get(f"/api/templates/{template_id}", headers=OTHER_USER).status_code == 403
        assert client.get("/api/templates", headers=OTHER_USER).json() == []

    def test_save_fields_validation_error(self, client: TestClient) -> None:
        template_id = _create_template(client)["id"]
        response = client.put(
            f"/api/templates/{template_id}/fields",
            json={"fields": [{"name": "a", "label": "A"}, {"name": "a", "label": "B"}]},
            headers=USER,
        )
        assert response.status_code == 400
        assert "duplicate name" in response.json()["detail"]

    def test_field_type_aliases_are_accepted(self, client: TestClient) -> None:
        template_id = _create_template(client)["id"]
        response = client.put(
            f"/api/templates/{template_id}/fields",
            json={"fields": [
                {"name": "phone", "label": "Phone", "fieldType": "tel"},
                {"name": "notes", "label": "Notes", "fieldType": " TextArea "},
            ]},
            headers=USER,
        )
        assert response.status_code == 200
        assert [f["fieldType"] for f in response.json()["fields"]] == ["phone", "textarea"]

    def test_unknown_field_type_is_rejected(self, client: TestClient) -> None:
        template_id = _create_template(client)["id"]
        response = client.put(
            f"/api/templates/{template_id}/fields",
            json={"fields": [{"name": "badge", "label": "Badge", "fieldType": "hologram"}]},
            headers=USER,
        )
        assert response.status_code == 422
        assert "unsupported field type 'hologram'" in response.text


class TestFieldDetectionEndpoint:
    """Tests for /api/templates/{id}/detect-fields."""

    def test_detect_fields(self, client: TestClient, fake_backends: Dict[str, FakeBackend]) -> None:
        for backend in fake_backends.values():
            backend.image_reply = extraction_reply(DETECTED_FIELDS)
            backend.text_reply = merge_reply({"fields": DETECTED_FIELDS})
        template_id = _create_template(client)["id"]

        response = client.post(
            f"/api/templates/{template_id}/detect-fields",
            files={"image": _image_file(1, "example.png")},
            headers=USER,
        )
        assert response.status_code == 200
        body = response.json()
        assert [f["name"] for f in body["fields"]] == ["fullName", "email"]
        assert body["template"]["status"] == "detecting-fields"

    def test_unusable_detection(self, client: TestClient, fake_backends: Dict[str, FakeBackend]) -> None:
        for backend in fake_backends.values():
            backend.image_reply = "nothing"
            backend.text_reply = "nothing"
        template_id = _create_template(client)["id"]

        response = client.post(
            f"/api/templates/{template_id}/detect-fields",
            files={"image": _image_file(2)},
            headers=USER,
        )
        assert response.status_code == 422
        assert "Failed to detect form fields" in response.json()["detail"]

    def test_unsupported_image_type(self, client: TestClient) -> None:
        template_id = _create_template(client)["id"]
        response = client.post(
            f"/api/templates/{template_id}/detect-fields",
            files={"image": ("scan.pdf", b"%PDF-1.4", "application/pdf")},
            headers=USER,
        )
        assert response.status_code == 400


class TestProcessingEndpoints:
    """Tests for test runs, selection, batches and export."""

    @pytest.fixture
    def template_id(self, client: TestClient) -> int:
        template_id = _create_template(client)["id"]
        response = client.put(
            f"/api/templates/{template_id}/fields",
            json={"fields": DETECTED_FIELDS},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "editing-fields"
        return template_id

    def test_backend_failure_returns_bad_gateway(
        self,
        client: TestClient,
        fake_backends: Dict[str, FakeBackend],
        template_id: int
    ) -> None:
        fake_backends["openai"].failing_images.add(make_image(3).content)
        response = client.post(
            f"/api/templates/{template_id}/test",
            files={"image": _image_file(3)},
            headers=USER,
        )
        assert response.status_code == 502
        assert "provider unavailable" in response.json()["detail"]

        [result] = client.get(f"/api/templates/{template_id}/results", headers=USER).json()
        assert result["status"] == "failed"

    def test_batch_requires_preferred_backend(self, client: TestClient, template_id: int) -> None:
        response = client.post(
            f"/api/templates/{template_id}/batch",
            files=[("images", _image_file(4))],
            headers=USER,
        )
        assert response.status_code == 400

    def test_full_workflow(self, client: TestClient, template_id: int, tmp_path: Path) -> None:
        response = client.post(
            f"/api/templates/{template_id}/test",
            files={"image": _image_file(5, "calibration.png")},
            headers=USER,
        )
        assert response.status_code == 200
        tested = response.json()
        assert tested["status"] == "complete"
        assert tested["gemini_result"] and tested["openai_result"]

        response = client.post(
            f"/api/templates/{template_id}/results/{tested['id']}/select",
            json={"backend": "gemini"},
            headers=USER,
        )
        assert response.status_code == 200
        assert response.json()["selected_result"] == "gemini"
        template = client.get(f"/api/templates/{template_id}", headers=USER).json()
        assert template["status"] == "complete"
        assert template["preferred_backend"] == "gemini"

        response = client.post(
            f"/api/templates/{template_id}/batch",
            files=[("images", _image_file(6)), ("images", _image_file(7))],
            headers=USER,
        )
        assert response.status_code == 202
        body = response.json()
        assert body["message"] == "Processing started"
        assert len(body["result_ids"]) == 2

        results = _wait_for_results(client, template_id)
        batch = [r for r in results if r["id"] in body["result_ids"]]
        assert [r["status"] for r in batch] == ["complete", "complete"]
        for result in batch:
            assert result["selected_result"] == "gemini"
            assert result["extracted_data"]["fullName"] == "Ada Lovelace"
            assert result["extracted_data"]["email"] == "ada@example.com"
            assert Path(result["original_image_path"]).parent == tmp_path / "uploads"

        single = client.get(f"/api/templates/{template_id}/results/{batch[0]['id']}", headers=USER)
        assert single.json()["filename"] == "document_6.png"

        response = client.get(f"/api/templates/{template_id}/export?format=csv", headers=USER)
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert "attachment" in response.headers["content-disposition"]
        rows = list(csv.reader(io.StringIO(response.text)))
        assert rows[0] == ["fileName", "fullName", "email"]
        assert [row[0] for row in rows[1:]] == ["calibration.png", "document_6.png", "document_7.png"]

        exported = client.get(f"/api/templates/{template_id}/export", headers=USER).json()
        assert len(exported) == 3

    def test_unknown_export_format(self, client: TestClient, template_id: int) -> None:
        response = client.get(f"/api/templates/{template_id}/export?format=xml", headers=USER)
        assert response.status_code == 400

    def test_select_unknown_backend(self, client: TestClient, template_id: int) -> None:
        response = client.post(
            f"/api/templates/{template_id}/results/1/select",
            json={"backend": "claude"},
            headers=USER,
        )
        assert response.status_code == 400

    def test_unknown_result(self, client: TestClient, template_id: int) -> None:
        response = client.get(f"/api/templates/{template_id}/results/999", headers=USER)
        assert response.status_code == 404
