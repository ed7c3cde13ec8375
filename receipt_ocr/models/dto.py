"""
Typed contracts for what the inference service returns and what the
pipeline persists.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JournalEntry(BaseModel):
    """
    One bookkeeping journal entry as produced by the extraction prompt.

    The model answers with Japanese keys; aliases map them onto Python
    names. Amounts arrive as strings (sometimes as bare numbers).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    transaction_date: str = Field(alias="取引日")
    debit_account: Optional[str] = Field(default=None, alias="借方勘定科目")
    credit_account: Optional[str] = Field(default=None, alias="貸方勘定科目")
    debit_tax_category: Optional[str] = Field(default=None, alias="借方税区分")
    credit_tax_category: Optional[str] = Field(default=None, alias="貸方税区分")
    debit_amount: Optional[str] = Field(default=None, alias="借方金額")
    credit_amount: Optional[str] = Field(default=None, alias="貸方金額")
    description: Optional[str] = Field(default=None, alias="摘要")
    counterparty: Optional[str] = Field(default=None, alias="取引先")
    registration_number: Optional[str] = Field(default=None, alias="登録番号")
    reduced_rate_amount: Optional[str] = Field(default=None, alias="8%対象金額")

    @field_validator("*", mode="before")
    @classmethod
    def _numbers_as_text(cls, value: Any) -> Any:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float)):
            return str(value)
        return value


class ReceiptRecord(BaseModel):
    """
    Normalized receipt fields persisted per item and compared against
    ground truth.
    """

    date: str
    store_name: str = ""
    total_amount: float
    tax_8_amount: float
    tax_10_amount: float
    invoice_number: str = ""
