"""Prompt templates and output schemas per document type.

Centralizes prompt text so both backends ask for the same keys. The field
models double as validators for the cloud backend's structured output.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict

from .base import DocumentType


class ExpenseFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    vendor: Optional[str] = None
    category: Optional[str] = None
    date: Optional[str] = None
    amount: Optional[str] = None
    notes: Optional[str] = None


class BillFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    clientName: Optional[str] = None
    issueDate: Optional[str] = None
    expectedPaymentDate: Optional[str] = None
    amount: Optional[str] = None
    currency: Optional[str] = None
    number: Optional[str] = None
    description: Optional[str] = None
    notes: Optional[str] = None


FIELD_MODELS: Dict[DocumentType, Type[BaseModel]] = {
    DocumentType.EXPENSE: ExpenseFields,
    DocumentType.BILL: BillFields,
}

# Compact schemas for the local model; types written the way small models follow best.
LOCAL_SCHEMAS: Dict[DocumentType, str] = {
    DocumentType.EXPENSE: (
        '{"vendor": string, "category": string, "date": string(YYYY-MM-DD), '
        '"amount": string(decimal), "notes": string}'
    ),
    DocumentType.BILL: (
        '{"clientName": string, "number": string, "issueDate": string(YYYY-MM-DD), '
        '"amount": string(decimal), "description": string}'
    ),
}

_LOCAL_KEYS: Dict[DocumentType, tuple] = {
    DocumentType.EXPENSE: ("vendor", "category", "date", "amount", "notes"),
    DocumentType.BILL: ("clientName", "number", "issueDate", "amount", "description"),
}


def cloud_output_schema(document_type: DocumentType) -> Dict[str, Any]:
    """JSON schema for strict structured output (every key present, nullable)."""
    model = FIELD_MODELS[document_type]
    keys = list(model.model_fields)
    return {
        "type": "object",
        "properties": {k: {"type": ["string", "null"]} for k in keys},
        "required": keys,
        "additionalProperties": False,
    }


def cloud_prompt(document_type: DocumentType) -> str:
    if document_type == DocumentType.EXPENSE:
        return (
            "You are a precise expense document analyzer. Analyze this document and "
            "extract structured information.\n\n"
            "Instructions:\n"
            "- Extract vendor/company name (who you paid)\n"
            "- Determine appropriate expense category from: Office Supplies, Travel, "
            "Software, Equipment, Marketing, Meals, Utilities, Other\n"
            "- Find the transaction date (convert to YYYY-MM-DD format)\n"
            '- Identify the total amount (as decimal string like "123.45", without '
            "currency symbols), ensure it is in EUR\n"
            "- Extract any relevant notes or description\n\n"
            "Return ONLY the fields you can confidently identify. Use null for any "
            "field you are unsure about.\n\n"
            "JSON keys: vendor, category, date, amount, notes"
        )
    return (
        "You are a precise invoice/bill document analyzer. Analyze this document and "
        "extract structured information.\n\n"
        "Instructions:\n"
        "- Extract client/customer name (who the bill is for)\n"
        "- Find the issue date (convert to YYYY-MM-DD format)\n"
        "- Find the due date or payment date (convert to YYYY-MM-DD format)\n"
        '- Identify the total amount (as decimal string like "123.45", without '
        "currency symbols)\n"
        "- Determine the currency (EUR, USD, GBP, etc.)\n"
        "- Extract the invoice/bill number\n"
        "- Get service or product description\n"
        "- Extract any relevant notes or additional observations\n\n"
        "Return ONLY the fields you can confidently identify. Use null for any "
        "field you are unsure about.\n\n"
        "JSON keys: clientName, issueDate, expectedPaymentDate, amount, currency, "
        "number, description, notes"
    )


def local_schema_prompt(document_type: DocumentType) -> str:
    """Schema prompt used for image and file-attached generation."""
    label = "expense" if document_type == DocumentType.EXPENSE else "bill"
    return (
        f"Extract {label} fields as JSON with these exact keys and types. "
        "Return ONLY JSON, no explanations. "
        f"Schema: {LOCAL_SCHEMAS[document_type]}. "
        "If a field is missing, return empty string."
    )


def local_text_prompt(document_type: DocumentType, text: str, limit: int = 2000) -> str:
    return (
        f"{local_schema_prompt(document_type)}\n\n"
        f"Text (first {limit} chars):\n{text[:limit]}\n\nJSON:"
    )


def local_strict_retry_prompt(document_type: DocumentType, text: Optional[str] = None) -> str:
    template = json.dumps({k: "" for k in _LOCAL_KEYS[document_type]})
    prompt = (
        f"Return ONLY valid JSON with the exact schema for {document_type.value}.\n"
        f"{template}\n"
        "Use an empty string for any missing field. "
        "Do not include any text other than the JSON."
    )
    if text:
        prompt = f"{prompt}\n\nDocument text:\n{text}\n\nJSON:"
    return prompt


def clean_fields(document_type: DocumentType, data: Dict[str, Any]) -> Dict[str, Any]:
    """Validate cloud output against the field model and drop null values."""
    model = FIELD_MODELS[document_type]
    return model.model_validate(data).model_dump(exclude_none=True)
