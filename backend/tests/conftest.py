"""
Shared fixtures for backend tests.

The sample receipts are OCR dumps as Tesseract / cloud OCR return them: one
token group per line, with the McDonald's take-out amounts printed as a
column block ten lines below their labels.
"""
import pytest

from models.schemas import ParsedReceipt, PaymentInfo, ReceiptItem

# ── Sample OCR text ──────────────────────────────────────────────────────────

MCDONALDS_LINES = [
    "McDonald's",               # 0
    "1050 N Capitol Ave",       # 1
    "San Jose, CA 95131",       # 2
    "TEL# 408 555 0123",        # 3
    "KS# 3 12/8/22 07:45 PM",   # 4
    "Side1",                    # 5
    "Order 47",                 # 6
    "1 Happy Meal 6 Pc",        # 7
    "1 Ch McNuggets 6pc",       # 8
    "1 Snack Oreo McFlurry",    # 9
    "Subtotal",                 # 10
    "Tax",                      # 11
    "Take-Out Total",           # 12
    "Cash Tendered",            # 13
    "Change",                   # 14
    "Please come again",        # 15
    "4.89",                     # 16
    "2.69",                     # 17
    "Thank you for visiting",   # 18
    "Survey code below",        # 19
    "7.58",                     # 20  Subtotal + 10
    "0.52",                     # 21  Tax + 10
    "8.10",                     # 22  Take-Out Total + 10
    "10.00",                    # 23
    "1.90",                     # 24
]

MONTANA_LINES = [
    "MONTANA RESTAURANT",
    "2121 Main St",
    "Tel 415-555-0199",
    "Server: Ana   Table 12",
    "10/03/2023 6:32 PM",
    "2 Chicken Salad",
    "1 Iced Tea",
    "Subtotal 31.50",
    "Tax 2.76",
    "Total 34.26",
    "VISA XXXXXXXXXXXX4821",
    "Thank you for dining with us",
]


@pytest.fixture
def mcdonalds_text():
    return "\n".join(MCDONALDS_LINES)


@pytest.fixture
def montana_text():
    return "\n".join(MONTANA_LINES)


@pytest.fixture
def ai_receipt():
    """A receipt as the AI stage would return it."""
    return ParsedReceipt(
        merchant="Blue Bottle Coffee",
        date="2024-03-02",
        date_detected=True,
        time="09:15",
        total=11.25,
        items=[ReceiptItem(name="Latte", price=5.75, category="Beverage", confidence=0.95)],
        payment_method=PaymentInfo(method="Card", card_type="Visa",
                                   last_four_digits="4242", confidence=0.9),
        category="Food & Dining",
        confidence=0.92,
        raw_text="BLUE BOTTLE COFFEE\nLatte 5.75",
    )
