from __future__ import annotations

import json
import re
from typing import Any

import httpx

from spendtrail.core.config import Settings

RECEIPT_INSTRUCTIONS = """You are a receipt data extraction assistant. Extract the following \
information from the receipt:

1. Vendor/Merchant name (the store or company name)
2. Purchase date (the date the transaction occurred)
3. Total amount paid (the final total)
4. Currency as an ISO-4217 code (e.g. USD, EUR)
5. Individual line items with descriptions and prices

VENDOR RULES:
- For marketplace and platform purchases, the vendor is the platform brand, not the \
third-party seller, the shipping carrier or the payment processor:
  * Amazon, Amazon.com, AMZN Mktp, "Sold by ... / Fulfilled by Amazon" -> "Amazon"
  * eBay -> "eBay"; Etsy -> "Etsy"; Walmart.com / Walmart Marketplace -> "Walmart"
  * Uber and Uber Eats -> "Uber"; Lyft -> "Lyft"; DoorDash -> "DoorDash"
  * App Store / iTunes -> "Apple"; Google Play / Google Payments -> "Google"
- Otherwise use the business name printed at the top of the receipt.

DATE RULES:
- Use the ORDER DATE, PURCHASE DATE or TRANSACTION DATE.
- Never use a delivery, shipping, arrival or estimated delivery date.
- Format the date as YYYY-MM-DD.

AMOUNT RULES:
- Use the GRAND TOTAL or FINAL TOTAL including tax (the amount charged).
- Never use a subtotal, tax line or item price as the total.

OUTPUT:
- Return ONLY valid JSON, no markdown formatting, no code blocks.
- Return a JSON object with this exact structure:
{
  "vendor": "store name here",
  "date": "YYYY-MM-DD",
  "total": 0.00,
  "currency": "USD",
  "line_items": [
    {"description": "item name", "amount": 0.00}
  ],
  "confidence": 0.95
}

If you cannot find specific information:
- vendor: "Unknown Vendor"
- date: today's date
- currency: "USD"
- line_items: empty array
- confidence: your confidence level from 0 to 1"""

_FENCE_OPEN = re.compile(r"^```[a-zA-Z0-9_-]*[ \t]*\r?\n?")
_FENCE_CLOSE = re.compile(r"\r?\n?```\s*$")


class ModelCallError(RuntimeError):
    pass


def strip_code_fences(content: str) -> str:
    c = (content or "").strip()
    c = _FENCE_OPEN.sub("", c, count=1)
    c = _FENCE_CLOSE.sub("", c, count=1)
    return c.strip()


def parse_json_object(content: str) -> dict[str, Any]:
    """Parse the model reply into a dict, raising ``ValueError`` when it isn't one."""
    c = strip_code_fences(content)
    if not c:
        raise ValueError("Model returned empty content")
    try:
        obj = json.loads(c)
    except json.JSONDecodeError as first_error:
        # Replies sometimes wrap the object in prose; take the outermost {...}.
        m = re.search(r"\{.*\}", c, re.S)
        if not m:
            raise ValueError(f"Model reply is not JSON: {first_error}") from first_error
        try:
            obj = json.loads(m.group(0))
        except json.JSONDecodeError as e:
            raise ValueError(f"Model reply is not JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ValueError("Model reply is not a JSON object")
    return obj


def truncate_text(text: str, *, max_chars: int) -> str:
    t = (text or "").replace("\u202f", " ").replace("\xa0", " ").strip()
    if max_chars <= 0 or len(t) <= max_chars:
        return t
    return t[: max_chars - 20].rstrip() + "\n\n[TRUNCATED]"


def image_messages(image_url: str) -> list[dict[str, Any]]:
    return [
        {
            "role": "user",
            "content": [
                {"type": "text", "text": RECEIPT_INSTRUCTIONS},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        }
    ]


def text_messages(text: str) -> list[dict[str, Any]]:
    return [
        {"role": "system", "content": RECEIPT_INSTRUCTIONS},
        {
            "role": "user",
            "content": "Extract the receipt fields from this document text:\n\n" + text,
        },
    ]


class ChatCompletionsClient:
    """Minimal OpenAI-compatible ``/chat/completions`` client."""

    def __init__(
        self,
        *,
        api_key: str | None,
        base_url: str,
        model: str,
        temperature: float,
        timeout_seconds: float,
        enabled: bool = True,
        http_client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.temperature = temperature
        self.timeout_seconds = timeout_seconds
        self.enabled = enabled
        self._http = http_client or httpx.Client(follow_redirects=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> ChatCompletionsClient:
        return cls(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            model=settings.openai_model,
            temperature=settings.receipt_ai_temperature,
            timeout_seconds=settings.receipt_ai_timeout_seconds,
            enabled=settings.receipt_ai_enabled,
        )

    @property
    def available(self) -> bool:
        return bool(self.enabled and self.api_key)

    def complete(self, messages: list[dict[str, Any]], *, max_tokens: int = 1000) -> str:
        if not self.available:
            raise ModelCallError("Receipt AI is disabled or OPENAI_API_KEY is not set")

        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": max_tokens,
            "messages": messages,
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            resp = self._http.post(
                self.base_url + "/chat/completions",
                headers=headers,
                json=payload,
                timeout=self.timeout_seconds,
            )
            resp.raise_for_status()
        except httpx.TimeoutException as e:
            raise ModelCallError(f"Model request timed out after {self.timeout_seconds}s") from e
        except httpx.HTTPStatusError as e:
            raise ModelCallError(f"Model request failed with HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ModelCallError(f"Model request failed: {e}") from e

        try:
            msg = resp.json()["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ModelCallError("Malformed chat completion response") from e
        if isinstance(msg, dict) and msg.get("refusal"):
            raise ModelCallError(f"Model refused: {msg['refusal']}")
        content = msg.get("content") if isinstance(msg, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ModelCallError("No content returned from model")
        return content

    def close(self) -> None:
        self._http.close()
