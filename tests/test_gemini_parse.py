"""
Tests for the Gemini response parser (sem chamar a API).
"""

import json
from decimal import Decimal

import pytest

from payproof.infrastructure.llm.gemini_vision_extractor import parse_response, strip_fences


def test_strip_fences():
    raw = '```json\n{"amount": 1}\n```'
    assert strip_fences(raw) == '{"amount": 1}'
    assert strip_fences('  {"a": 1}  ') == '{"a": 1}'


def test_parse_full_response():
    raw = json.dumps({
        "description": "GCash send money receipt",
        "payment_method": "GCash",
        "amount": "₱1,200.00",
        "currency": "php",
        "sender": "Juan Dela Cruz",
        "recipient": "BP Store",
        "reference_number": "BP2024-001",
        "timestamp": "Mar 5, 2024 3:45 PM",
        "bank_name": None,
        "confidence": 0.93,
        "reasoning": "amount at top, ref at bottom",
    })
    fields, description, confidence, rationale = parse_response(raw)

    assert fields.amount == Decimal("1200.00")
    assert fields.currency == "PHP"
    assert fields.method == "GCash"
    assert fields.reference == "BP2024-001"
    assert fields.bank_name is None
    assert description == "GCash send money receipt"
    assert confidence == 0.93
    assert rationale == "amount at top, ref at bottom"


def test_parse_fenced_response_with_transaction_id():
    raw = '```json\n{"amount": 150, "currency": "MYR", "transaction_id": "MY-778812", "confidence": 2}\n```'
    fields, _, confidence, _ = parse_response(raw)
    assert fields.amount == Decimal("150.00")
    assert fields.reference == "MY-778812"
    assert confidence == 1.0


def test_null_like_strings_become_none():
    fields, _, confidence, _ = parse_response(
        '{"payment_method": "unknown", "sender": "N/A", "amount": null, "confidence": "high"}'
    )
    assert fields.method is None
    assert fields.sender is None
    assert fields.amount is None
    assert fields.is_empty()
    assert confidence == 0.0


def test_non_positive_amount_dropped():
    fields, *_ = parse_response('{"amount": 0}')
    assert fields.amount is None


def test_invalid_json_raises():
    with pytest.raises(json.JSONDecodeError):
        parse_response("Sorry, I cannot read this image.")


def test_non_object_json_raises():
    with pytest.raises(ValueError):
        parse_response("[1, 2, 3]")
