"""
Tests for the receipts router — /parse, /ocr and /diagnose.

Tesseract is patched at the router's import site and the AI stage is
swapped through dependency_overrides, so no binaries or API keys are needed.
"""
import base64
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient

IMAGE_B64 = base64.b64encode(b"fake-jpeg-bytes").decode()


# ── Fixture ──────────────────────────────────────────────────────────────────

@pytest.fixture
def app():
    from fastapi import FastAPI
    from routers.receipts import router
    from services.ai_parser import get_ai_parser

    test_app = FastAPI()
    test_app.include_router(router, prefix="/api/receipts")
    test_app.dependency_overrides[get_ai_parser] = lambda: None
    return test_app


def _client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


# ── POST /api/receipts/parse ─────────────────────────────────────────────────

class TestParseText:

    @pytest.mark.asyncio
    async def test_heuristic_parse(self, app, mcdonalds_text):
        async with _client(app) as client:
            resp = await client.post("/api/receipts/parse", json={"text": mcdonalds_text})

        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["parser"] == "heuristic"
        assert data["itemCount"] == 3
        receipt = data["parsedReceipt"]
        assert receipt["merchant"] == "McDonald's"
        assert receipt["total"] == 8.10
        assert receipt["paymentMethod"]["method"] == "Cash"
        assert receipt["rawText"] == mcdonalds_text
        assert data["confidence"] == receipt["confidence"]

    @pytest.mark.asyncio
    async def test_empty_body_degrades(self, app):
        async with _client(app) as client:
            resp = await client.post("/api/receipts/parse", json={})

        assert resp.status_code == 200
        data = resp.json()
        assert data["parsedReceipt"]["merchant"] == "Unknown Merchant"
        assert data["confidence"] == 0
        assert data["itemCount"] == 0

    @pytest.mark.asyncio
    async def test_ai_stage_used_when_available(self, app, ai_receipt):
        from services.ai_parser import get_ai_parser
        fake_ai = AsyncMock(return_value=ai_receipt)
        app.dependency_overrides[get_ai_parser] = lambda: fake_ai

        async with _client(app) as client:
            resp = await client.post("/api/receipts/parse", json={"text": "BLUE BOTTLE"})

        assert resp.status_code == 200
        data = resp.json()
        assert data["parser"] == "ai"
        assert data["parsedReceipt"]["merchant"] == "Blue Bottle Coffee"
        assert data["parsedReceipt"]["paymentMethod"]["lastFourDigits"] == "4242"
        fake_ai.assert_awaited_once_with("BLUE BOTTLE")

    @pytest.mark.asyncio
    async def test_ai_failure_falls_back(self, app, montana_text):
        from services.ai_parser import get_ai_parser
        app.dependency_overrides[get_ai_parser] = lambda: AsyncMock(return_value=None)

        async with _client(app) as client:
            resp = await client.post("/api/receipts/parse", json={"text": montana_text})

        data = resp.json()
        assert data["parser"] == "heuristic"
        assert data["parsedReceipt"]["merchant"] == "Montana Restaurant"

    @pytest.mark.asyncio
    async def test_ai_exception_falls_back(self, app, montana_text):
        from services.ai_parser import get_ai_parser
        app.dependency_overrides[get_ai_parser] = lambda: AsyncMock(side_effect=ValueError("bad reply"))

        async with _client(app) as client:
            resp = await client.post("/api/receipts/parse", json={"text": montana_text})

        assert resp.status_code == 200
        assert resp.json()["parser"] == "heuristic"


# ── POST /api/receipts/ocr ───────────────────────────────────────────────────

class TestOcrReceipt:

    @pytest.mark.asyncio
    async def test_no_image(self, app):
        async with _client(app) as client:
            resp = await client.post("/api/receipts/ocr", json={"imageBase64": ""})

        assert resp.status_code == 400
        assert resp.json()["detail"] == "No image provided"

    @pytest.mark.asyncio
    async def test_invalid_base64(self, app):
        async with _client(app) as client:
            resp = await client.post("/api/receipts/ocr", json={"imageBase64": "%%%"})

        assert resp.status_code == 400
        assert "base64" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_ocr_then_parse(self, app, mcdonalds_text):
        with patch("routers.receipts.extract_text_from_image",
                   return_value=mcdonalds_text) as mock_ocr:
            async with _client(app) as client:
                resp = await client.post(
                    "/api/receipts/ocr",
                    json={"imageBase64": "data:image/jpeg;base64," + IMAGE_B64},
                )

        assert resp.status_code == 200
        mock_ocr.assert_called_once_with(b"fake-jpeg-bytes")
        data = resp.json()
        assert data["extractedText"] == mcdonalds_text
        assert data["ocrProvider"] == "tesseract"
        assert data["parser"] == "heuristic"
        assert data["itemCount"] == 3
        assert data["parsedReceipt"]["subtotal"] == 7.58

    @pytest.mark.asyncio
    async def test_no_text_found(self, app):
        with patch("routers.receipts.extract_text_from_image", return_value=""):
            async with _client(app) as client:
                resp = await client.post("/api/receipts/ocr", json={"imageBase64": IMAGE_B64})

        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_tesseract_missing_is_500(self, app):
        with patch("routers.receipts.extract_text_from_image",
                   side_effect=RuntimeError("OCR dependencies not installed (pytesseract, Pillow)")):
            async with _client(app) as client:
                resp = await client.post("/api/receipts/ocr", json={"imageBase64": IMAGE_B64})

        assert resp.status_code == 500
        assert "Tesseract" in resp.json()["detail"]

    @pytest.mark.asyncio
    async def test_unreadable_image_is_422(self, app):
        with patch("routers.receipts.extract_text_from_image",
                   side_effect=RuntimeError("Cannot open image: bad header")):
            async with _client(app) as client:
                resp = await client.post("/api/receipts/ocr", json={"imageBase64": IMAGE_B64})

        assert resp.status_code == 422
        assert "Cannot open image" in resp.json()["detail"]


# ── GET /api/receipts/diagnose ───────────────────────────────────────────────

class TestDiagnose:

    @pytest.mark.asyncio
    async def test_reports_checks_without_key_material(self, app, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-secret-value")
        async with _client(app) as client:
            resp = await client.get("/api/receipts/diagnose")

        assert resp.status_code == 200
        data = resp.json()
        assert "all_ok" in data
        assert {"tesseract", "ocr_libraries", "heic_support", "anthropic_key"} <= set(data["checks"])
        assert data["checks"]["anthropic_key"]["set"] is True
        assert "sk-secret-value" not in resp.text

    @pytest.mark.asyncio
    async def test_missing_tesseract_fails_check(self, app, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        with patch("routers.receipts.tesseract_version",
                   side_effect=RuntimeError("Tesseract OCR binary not found in PATH")):
            async with _client(app) as client:
                resp = await client.get("/api/receipts/diagnose")

        data = resp.json()
        assert data["all_ok"] is False
        assert data["checks"]["tesseract"] == {
            "ok": False, "error": "Tesseract OCR binary not found in PATH",
        }
        assert data["checks"]["anthropic_key"]["set"] is False
