"""
OCR Service — turns an uploaded receipt image into plain text with Tesseract.

The text it produces is the only input the receipt parsers see.  Images
arrive as base64 (optionally as a ``data:image/...;base64,`` URL, which is
what the browser's FileReader hands the frontend).
"""
import base64
import binascii
import io
import logging
import re

logger = logging.getLogger("tally.ocr")

try:
    import pytesseract
    from PIL import Image, ImageEnhance, ImageFilter, ImageOps
    OCR_AVAILABLE = True
except ImportError:
    OCR_AVAILABLE = False
    logger.warning("pytesseract/Pillow not available — OCR disabled")

# Register HEIC/HEIF support via pillow-heif if available
try:
    from pillow_heif import register_heif_opener
    register_heif_opener()
    HEIF_AVAILABLE = True
except ImportError:
    HEIF_AVAILABLE = False
    logger.info("pillow-heif not installed — HEIC files will not be supported")

DATA_URL_PREFIX_RE = re.compile(r'^data:image/[a-z0-9.+-]+;base64,', re.I)

TESSERACT_CONFIG = "--psm 6"


def decode_image_payload(image_base64: str) -> bytes:
    """Decode a base64 image (raw or data-URL).  Raises ValueError on bad input."""
    payload = DATA_URL_PREFIX_RE.sub('', (image_base64 or "").strip())
    payload = re.sub(r'\s+', '', payload)
    if not payload:
        raise ValueError("No image provided")
    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Image is not valid base64: {e}") from e
    if not data:
        raise ValueError("No image provided")
    return data


def preprocess_image(image: "Image.Image") -> "Image.Image":
    """
    Improve OCR accuracy by preprocessing the receipt image:
    - Convert to grayscale
    - Upscale if small
    - Invert dark-background bands (white text printed on black)
    - Enhance contrast and sharpen
    """
    import numpy as np

    img = image.convert("L")

    w, h = img.size
    if w < 800:
        scale = 800 / w
        img = img.resize((int(w * scale), int(h * scale)), Image.LANCZOS)

    # ── Invert dark-background stripes ────────────────────────────────────────
    # A band averaging below 80 is mostly dark; flipping it gives Tesseract
    # black-on-white text.
    arr = np.array(img)
    band_height = max(1, arr.shape[0] // 40)   # ~40 bands across receipt height
    for y in range(0, arr.shape[0], band_height):
        band = arr[y:y + band_height, :]
        if band.mean() < 80:
            arr[y:y + band_height, :] = 255 - band
    img = Image.fromarray(arr)

    img = ImageEnhance.Contrast(img).enhance(2.0)
    img = img.filter(ImageFilter.SHARPEN)
    return img


def extract_text_from_image(image_bytes: bytes) -> str:
    """
    Run Tesseract OCR on image bytes, return raw text.
    Supports JPEG, PNG, WEBP, and HEIC/HEIF (with pillow-heif installed).
    """
    if not OCR_AVAILABLE:
        raise RuntimeError("OCR dependencies not installed (pytesseract, Pillow)")

    try:
        image = Image.open(io.BytesIO(image_bytes))
        image = ImageOps.exif_transpose(image)
    except Exception as e:
        msg = str(e)
        if "heif" in msg.lower() or "heic" in msg.lower() or "cannot identify" in msg.lower():
            if not HEIF_AVAILABLE:
                raise RuntimeError(
                    "Cannot read image — HEIC/HEIF files require pillow-heif"
                ) from e
        raise RuntimeError(f"Cannot open image: {msg}") from e

    # Convert HEIF/palette/CMYK modes → RGB for Tesseract compatibility
    if image.mode not in ("RGB", "L", "RGBA"):
        image = image.convert("RGB")

    processed = preprocess_image(image)
    try:
        text = pytesseract.image_to_string(processed, config=TESSERACT_CONFIG)
    except pytesseract.TesseractNotFoundError as e:
        raise RuntimeError("Tesseract OCR binary not found in PATH") from e
    logger.debug("Tesseract returned %d chars", len(text))
    return text.strip()


def tesseract_version() -> str:
    """Installed Tesseract version.  Raises RuntimeError when OCR cannot run."""
    if not OCR_AVAILABLE:
        raise RuntimeError("OCR dependencies not installed (pytesseract, Pillow)")
    try:
        return str(pytesseract.get_tesseract_version())
    except pytesseract.TesseractNotFoundError as e:
        raise RuntimeError("Tesseract OCR binary not found in PATH") from e
