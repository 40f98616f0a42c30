from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Literal
from datetime import date as _date


ItemCategory = Literal["Food", "Beverage", "General", "Healthcare", "Automotive", "Gift Card"]
ReceiptCategory = Literal[
    "Food & Dining", "Groceries", "Healthcare", "Transportation", "Shopping", "Other",
]
PaymentMethodName = Literal["Cash", "Card", "Gift Card", "Unknown"]


class _CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire (matches the finance app's JSON)."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


# ── Line Item ──────────────────────────────────────────
class ReceiptItem(_CamelModel):
    name: str = Field(min_length=1)
    price: float = Field(default=0.0, ge=0)
    quantity: int = Field(default=1, ge=1)
    category: ItemCategory = "General"
    confidence: float = Field(default=0.8, ge=0, le=1)


# ── Payment ────────────────────────────────────────────
class PaymentInfo(_CamelModel):
    method: PaymentMethodName = "Unknown"
    card_type: Optional[str] = None            # free-text brand, e.g. "Visa"
    last_four_digits: Optional[str] = Field(default=None, pattern=r"^\d{4}$")
    amount: float = Field(default=0.0, ge=0)
    confidence: float = Field(default=0.2, ge=0, le=1)


# ── Receipt ────────────────────────────────────────────
class ParsedReceipt(_CamelModel):
    merchant: str = "Unknown Merchant"
    address: Optional[str] = None
    phone: Optional[str] = None
    date: str = Field(default_factory=lambda: _date.today().isoformat())
    date_detected: bool = False                # False when `date` is the today() fallback
    time: Optional[str] = None                 # HH:MM, 24-hour
    total: float = Field(default=0.0, ge=0)
    subtotal: Optional[float] = Field(default=None, ge=0)
    tax: Optional[float] = Field(default=None, ge=0)
    tip: Optional[float] = Field(default=None, ge=0)
    discount: Optional[float] = Field(default=None, ge=0)
    items: List[ReceiptItem] = Field(default_factory=list)
    payment_method: PaymentInfo = Field(default_factory=PaymentInfo)
    category: ReceiptCategory = "Other"
    confidence: float = Field(default=0.0, ge=0, le=1)
    raw_text: str = ""


# ── Requests ───────────────────────────────────────────
class ParseTextRequest(_CamelModel):
    text: str = ""

class OcrRequest(_CamelModel):
    image_base64: str = ""                     # raw base64 or a data:image/...;base64, URL


# ── Responses ──────────────────────────────────────────
class ParseResult(_CamelModel):
    success: bool = True
    parsed_receipt: ParsedReceipt
    confidence: float
    item_count: int
    parser: Literal["ai", "heuristic"]

class OcrResult(ParseResult):
    extracted_text: str
    ocr_provider: str = "tesseract"
