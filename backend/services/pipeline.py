"""
Two-stage receipt parse: an optional AI stage, then the heuristic parser.

The AI stage is any async callable ``text -> ParsedReceipt | None``; ``None``
means "no usable result" and the heuristic parser runs instead.  An AI stage
that raises is treated the same way.  Each stage is tried once.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Optional

from models.schemas import ParsedReceipt
from services.receipt_parser import parse_receipt_text

logger = logging.getLogger("tally.pipeline")

AiParser = Callable[[str], Awaitable[Optional[ParsedReceipt]]]


@dataclass(frozen=True)
class ParseOutcome:
    receipt: ParsedReceipt
    source: Literal["ai", "heuristic"]


async def parse_receipt(text: str, ai_parser: Optional[AiParser] = None) -> ParseOutcome:
    if ai_parser is not None:
        try:
            receipt = await ai_parser(text)
        except Exception as e:
            logger.warning("AI stage failed (%s): %s — falling back to heuristics",
                           type(e).__name__, e)
            receipt = None
        if receipt is not None:
            return ParseOutcome(receipt=receipt, source="ai")
        logger.info("AI stage returned nothing — falling back to heuristics")
    return ParseOutcome(receipt=parse_receipt_text(text), source="heuristic")
