"""
Turn the model's raw answer into a normalized ReceiptRecord.

The extraction prompt asks for a JSON array of journal entries with
Japanese keys. Models wrap that array in different ways (bare, inside a
```json fence, inside an OpenAI-like envelope, as a single object), so
the payload is unwrapped first and then validated into typed models.
Only the first journal entry is used.
"""

import json
import re
from typing import Any

from pydantic import ValidationError

from receipt_ocr.core.config import ERROR_BODY_MAX_CHARS
from receipt_ocr.core.exceptions import MalformedResponseError
from receipt_ocr.models.dto import JournalEntry, ReceiptRecord

_CODE_FENCE = re.compile(r"```(?:json)?\s*(.*?)\s*```", re.DOTALL | re.IGNORECASE)
_LEADING_NUMBER = re.compile(r"^-?\d+(?:\.\d+)?")
_AMOUNT_NOISE = re.compile(r"[,\s¥￥円]")


def _excerpt(raw: str) -> dict[str, Any]:
    return {"excerpt": raw[:ERROR_BODY_MAX_CHARS]}


def _try_parse_json(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        return None


def _unwrap_openai_like(obj: Any) -> Any:
    if not isinstance(obj, dict):
        return obj
    choices = obj.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict) and isinstance(message.get("content"), str):
            return _parse_payload(message["content"])
    return obj


def _parse_payload(raw: str) -> Any:
    text = raw.strip()
    fenced = _CODE_FENCE.search(text)
    if fenced:
        text = fenced.group(1)
    parsed = _try_parse_json(text)
    if isinstance(parsed, str):
        # JSON string holding JSON
        parsed = _try_parse_json(parsed)
    return _unwrap_openai_like(parsed)


def parse_amount(value: str | None) -> float:
    """
    Parse an amount string leniently.

    Thousands separators, currency marks and whitespace are ignored; the
    leading number is used. Missing or unparseable amounts become 0.0.

    Example:
        >>> parse_amount("1,080円")
        1080.0
        >>> parse_amount("")
        0.0
    """
    if not value:
        return 0.0
    match = _LEADING_NUMBER.match(_AMOUNT_NOISE.sub("", value))
    return float(match.group(0)) if match else 0.0


def to_receipt_record(entry: JournalEntry) -> ReceiptRecord:
    """Map one journal entry onto the receipt fields.

    The 10% amount is derived: total minus the 8% (reduced-rate) amount.
    """
    tax_8_amount = parse_amount(entry.reduced_rate_amount)
    total_amount = parse_amount(entry.debit_amount)
    return ReceiptRecord(
        date=entry.transaction_date.replace("/", "-"),
        store_name=entry.counterparty or "",
        total_amount=total_amount,
        tax_8_amount=tax_8_amount,
        tax_10_amount=total_amount - tax_8_amount,
        invoice_number=entry.registration_number or "",
    )


class ReceiptTransformer:
    """ResultTransformer for journal-entry answers. Stateless."""

    def transform(self, raw: str) -> ReceiptRecord:
        """
        Validate ``raw`` and map its first journal entry to a ReceiptRecord.

        Raises:
            MalformedResponseError: If the payload is not JSON, holds no
                entries, or the first entry lacks required fields
        """
        if not raw or not raw.strip():
            raise MalformedResponseError("Empty response", details=_excerpt(raw or ""))

        payload = _parse_payload(raw)
        if payload is None:
            raise MalformedResponseError(
                "Response is not valid JSON", details=_excerpt(raw)
            )
        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            raise MalformedResponseError(
                f"Expected a list of journal entries, got {type(payload).__name__}",
                details=_excerpt(raw),
            )
        if not payload:
            raise MalformedResponseError(
                "No journal entries found in response", details=_excerpt(raw)
            )

        first = payload[0]
        if not isinstance(first, dict):
            raise MalformedResponseError(
                "Journal entry is not an object", details=_excerpt(raw)
            )
        try:
            entry = JournalEntry.model_validate(first)
        except ValidationError as e:
            raise MalformedResponseError(
                "Journal entry failed validation",
                details={
                    **_excerpt(raw),
                    "errors": [err["msg"] for err in e.errors()],
                },
            ) from e
        return to_receipt_record(entry)
