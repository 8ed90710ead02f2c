"""
Gemini Vision Extractor — leitura estruturada de comprovantes.

Envia o screenshot como image part e pede uma resposta JSON com os
campos da transação. Usa o SDK `google-genai`.

Erros de rede/serviço sobem como exceção (o GuardedPort faz o retry);
uma resposta que não é JSON válido volta como VisionExtraction com
`error` preenchido, que o wrapper trata como resultado degradado.
"""

import json
import logging
import re
import time
from decimal import Decimal, InvalidOperation

from google import genai
from google.genai import types

from payproof.core.interfaces.vision_extractor import IVisionExtractor, VisionExtraction, VisionFields

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an expert at reading payment screenshots from Southeast Asian mobile wallets and banking apps.

IMPORTANT: Respond ONLY with a JSON object, no markdown, no backticks, no extra text.

Extract from the screenshot:
- Payment method (GCash, Maya/PayMaya, GrabPay, BPI, BDO, Metrobank, UnionBank, Maybank, CIMB, Touch 'n Go, Boost, Public Bank, ...)
- Amount paid (currency symbols: ₱ for PHP, RM for MYR)
- Sender (name or phone number)
- Recipient (name or phone number)
- Transaction reference number / transaction ID
- Timestamp of the payment
- Bank or service name

Output JSON format:
{
    "description": "One sentence describing the screenshot",
    "payment_method": "string or null",
    "amount": number or null,
    "currency": "PHP" | "MYR" | null,
    "sender": "string or null",
    "recipient": "string or null",
    "reference_number": "string or null",
    "timestamp": "string or null, as shown on screen",
    "bank_name": "string or null",
    "confidence": 0.0 to 1.0,
    "reasoning": "What you found and where"
}

Rules:
- Report the amount actually sent, never fees or account balances
- Distinguish sender from recipient carefully
- Use null for anything you cannot read; never guess
- If the image is not a payment confirmation, return all fields null and confidence 0
"""


def strip_fences(raw: str) -> str:
    """Remove blocos ```json ... ``` que o modelo às vezes devolve."""
    raw = raw.strip()
    if raw.startswith("```"):
        lines = raw.split("\n")
        raw = "\n".join(lines[1:])
        if raw.rstrip().endswith("```"):
            raw = raw.rstrip()[:-3]
        raw = raw.strip()
    return raw


def _clean_str(value) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text or text.lower() in ("null", "none", "n/a", "unknown"):
        return None
    return text


def _parse_amount(value) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    text = re.sub(r"[^\d.\-]", "", str(value))
    if not text:
        return None
    try:
        amount = Decimal(text).quantize(Decimal("0.01"))
    except InvalidOperation:
        return None
    return amount if amount > 0 else None


def parse_response(raw: str) -> tuple[VisionFields, str, float, str]:
    """
    Converte o JSON do modelo em campos tipados.

    Returns:
        (fields, description, confidence, rationale)

    Raises:
        json.JSONDecodeError / ValueError se a resposta não for um objeto JSON.
    """
    data = json.loads(strip_fences(raw))
    if not isinstance(data, dict):
        raise ValueError(f"expected JSON object, got {type(data).__name__}")

    currency = _clean_str(data.get("currency"))
    fields = VisionFields(
        method=_clean_str(data.get("payment_method")),
        amount=_parse_amount(data.get("amount")),
        currency=currency.upper() if currency else None,
        sender=_clean_str(data.get("sender")),
        recipient=_clean_str(data.get("recipient")),
        reference=_clean_str(data.get("reference_number") or data.get("transaction_id")),
        timestamp=_clean_str(data.get("timestamp")),
        bank_name=_clean_str(data.get("bank_name")),
    )
    try:
        confidence = float(data.get("confidence") or 0.0)
    except (TypeError, ValueError):
        confidence = 0.0
    confidence = max(0.0, min(confidence, 1.0))
    return fields, str(data.get("description") or ""), confidence, str(data.get("reasoning") or "")


class GeminiVisionExtractor(IVisionExtractor):
    """Extração estruturada via Gemini."""

    def __init__(self, api_key: str, model_name: str = "gemini-2.0-flash"):
        self.model_name = model_name
        self.client = genai.Client(api_key=api_key)

    @property
    def ready(self) -> bool:
        return True

    def extract_structured(self, image_bytes: bytes, task_hint: str = "") -> VisionExtraction:
        """
        Lê o comprovante e devolve os campos da transação.

        Args:
            image_bytes: JPEG normalizado.
            task_hint: Contexto opcional (ex: moeda/valor esperados).

        Returns:
            VisionExtraction (com `error` se a resposta não pôde ser parseada).
        """
        t0 = time.perf_counter()

        prompt = SYSTEM_PROMPT
        if task_hint:
            prompt += f"\n\nContext from the submitter: {task_hint}"

        response = self.client.models.generate_content(
            model=self.model_name,
            contents=[
                types.Part.from_bytes(data=image_bytes, mime_type="image/jpeg"),
                prompt,
            ],
            config={
                "temperature": 0.1,
                "max_output_tokens": 1024,
            },
        )
        raw = (response.text or "").strip()
        latency = round((time.perf_counter() - t0) * 1000, 1)

        try:
            fields, description, confidence, rationale = parse_response(raw)
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Gemini returned unparseable output: {e}")
            return VisionExtraction(
                description="",
                fields=VisionFields(),
                confidence=0.0,
                model_id=self.model_name,
                latency_ms=latency,
                error=f"JSON parse error: {e}. Raw: {raw[:200]}",
            )

        return VisionExtraction(
            description=description,
            fields=fields,
            confidence=confidence,
            rationale=rationale,
            model_id=self.model_name,
            latency_ms=latency,
        )
