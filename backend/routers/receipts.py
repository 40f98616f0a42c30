"""
Receipts Router

POST /api/receipts/parse     — parse OCR text into a structured receipt
POST /api/receipts/ocr       — OCR a base64 image, then parse the text
GET  /api/receipts/diagnose  — check Tesseract / Pillow / Anthropic setup

Nothing is persisted; the caller owns what happens to the parsed receipt.
"""
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from models.schemas import OcrRequest, OcrResult, ParseResult, ParseTextRequest
from services.ai_parser import ClaudeReceiptParser, get_ai_parser
from services.ocr_service import (
    HEIF_AVAILABLE,
    OCR_AVAILABLE,
    decode_image_payload,
    extract_text_from_image,
    tesseract_version,
)
from services.pipeline import parse_receipt

logger = logging.getLogger("tally.receipts")
router = APIRouter()


# ── Diagnostics ───────────────────────────────────────────────────────────────

@router.get("/diagnose")
async def diagnose():
    """Report whether OCR and the optional AI stage can run.  Never exposes key material."""
    checks = {}

    try:
        checks["tesseract"] = {"ok": True, "version": tesseract_version()}
    except RuntimeError as e:
        checks["tesseract"] = {"ok": False, "error": str(e)}

    checks["ocr_libraries"] = {"ok": OCR_AVAILABLE}
    # HEIC support and the Anthropic key are optional; they never fail the check.
    checks["heic_support"] = {"ok": True, "enabled": HEIF_AVAILABLE}
    key = os.environ.get("ANTHROPIC_API_KEY", "")
    checks["anthropic_key"] = {
        "ok": True,
        "set": bool(key),
        "looks_valid": key.startswith("sk-"),
    }

    return {"all_ok": all(c["ok"] for c in checks.values()), "checks": checks}


def _ocr_http_error(error: Exception) -> HTTPException:
    """A missing Tesseract install is a server fault; anything else is the image."""
    if "tesseract" in f"{type(error).__name__} {error}".lower():
        return HTTPException(status_code=500, detail="Tesseract OCR is not available on the server")
    return HTTPException(status_code=422, detail=f"OCR failed: {error}")


# ── Parse ─────────────────────────────────────────────────────────────────────

@router.post("/parse", response_model=ParseResult)
async def parse_text(
    body: ParseTextRequest,
    ai_parser: Optional[ClaudeReceiptParser] = Depends(get_ai_parser),
):
    """Parse OCR text supplied by the caller.  Always succeeds; check `confidence`."""
    outcome = await parse_receipt(body.text, ai_parser)
    receipt = outcome.receipt
    return ParseResult(
        parsed_receipt=receipt,
        confidence=receipt.confidence,
        item_count=len(receipt.items),
        parser=outcome.source,
    )


@router.post("/ocr", response_model=OcrResult)
async def ocr_receipt(
    body: OcrRequest,
    ai_parser: Optional[ClaudeReceiptParser] = Depends(get_ai_parser),
):
    """
    OCR a base64 receipt image with Tesseract, then run the same two-stage
    parse as /parse.  The extracted text is returned alongside the result.
    """
    if not body.image_base64 or not body.image_base64.strip():
        raise HTTPException(status_code=400, detail="No image provided")

    try:
        image_bytes = decode_image_payload(body.image_base64)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        ocr_text = extract_text_from_image(image_bytes)
    except Exception as e:
        logger.warning("OCR failed (%s): %s", type(e).__name__, e)
        raise _ocr_http_error(e) from e

    if not ocr_text:
        raise HTTPException(status_code=422, detail="Failed to extract text from image")

    outcome = await parse_receipt(ocr_text, ai_parser)
    receipt = outcome.receipt
    logger.info("OCR receipt parsed via %s: merchant=%r items=%d confidence=%.2f",
                outcome.source, receipt.merchant, len(receipt.items), receipt.confidence)
    return OcrResult(
        extracted_text=ocr_text,
        parsed_receipt=receipt,
        confidence=receipt.confidence,
        item_count=len(receipt.items),
        parser=outcome.source,
    )
