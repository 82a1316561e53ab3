from __future__ import annotations

import json
import re
from typing import Any

from cargotrol.config import DEFAULT_OPENAI_MODEL, AppConfig
from cargotrol.mapper import clean_text, parse_float, parse_int, split_awaiting
from cargotrol.models import AWAITING_OPTIONS, STATUS_OPTIONS, Status

EXTRACTION_TEMPERATURE = 0.1
EXTRACTION_MAX_TOKENS = 500

STATUS_CHOICES_TEXT = ", ".join(f'"{option}"' for option in STATUS_OPTIONS)
AWAITING_CHOICES_TEXT = ", ".join(option for option in AWAITING_OPTIONS if option != "-")

SYSTEM_PROMPT = f"""You are an expert at extracting shipping and supplier information from emails.
Extract the following fields and return them as a JSON object:
- supplier: Company name of the supplier
- cbm: Cubic meters (as a number)
- cartons: Number of cartons (as a number)
- grossWeight: Gross weight (as a number)
- productCost: Product cost in USD (as a number)
- freightCost: Freight cost in USD (as a number)
- client: Client/customer name
- referenceCode: Any reference or order number
- status: One of: {STATUS_CHOICES_TEXT}
- awaiting: What is being awaited ({AWAITING_CHOICES_TEXT}, or "-")

If any field is not mentioned in the email, set it to null or 0 for numbers.
Return ONLY valid JSON, no explanations."""

CODE_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)

# (response keys, item field, kind)
EXTRACTED_FIELDS: list[tuple[tuple[str, ...], str, str]] = [
    (("referenceCode", "reference_code"), "reference_code", "text"),
    (("supplier",), "supplier", "text"),
    (("cbm",), "cbm", "float"),
    (("cartons",), "cartons", "int"),
    (("grossWeight", "gross_weight"), "gross_weight", "float"),
    (("productCost", "product_cost"), "product_cost", "float"),
    (("freightCost", "freight_cost"), "freight_cost", "float"),
    (("client",), "client", "text"),
    (("status",), "status", "status"),
    (("awaiting",), "awaiting", "awaiting"),
]


class ExtractionError(RuntimeError):
    pass


def strip_code_fences(text: str) -> str:
    stripped = str(text).strip()
    match = CODE_FENCE_PATTERN.match(stripped)
    return match.group(1).strip() if match else stripped


def draft_from_extraction(payload: dict[str, Any]) -> dict[str, Any]:
    """Coerce a model response into item fields, using the import rules."""
    draft: dict[str, Any] = {}
    for keys, field_name, kind in EXTRACTED_FIELDS:
        raw_value = next((payload[key] for key in keys if key in payload), None)
        if kind == "float":
            draft[field_name] = parse_float(raw_value)
        elif kind == "int":
            draft[field_name] = parse_int(raw_value)
        elif kind == "status":
            draft[field_name] = Status.parse(raw_value)
        elif kind == "awaiting":
            draft[field_name] = split_awaiting(raw_value)
        else:
            draft[field_name] = clean_text(raw_value)
    return draft


class EmailExtractionClient:
    def __init__(self, client: Any, model: str = DEFAULT_OPENAI_MODEL) -> None:
        self.client = client
        self.model = model

    @classmethod
    def from_config(cls, config: AppConfig) -> "EmailExtractionClient":
        if not config.email_extraction_enabled:
            raise ExtractionError("Email extraction is not configured. Set OPENAI_API_KEY.")
        from openai import OpenAI

        client = OpenAI(api_key=config.openai_api_key, base_url=config.api_base_url or None)
        return cls(client, model=config.openai_model)

    def extract(self, email_text: str, container_name: str = "") -> dict[str, Any]:
        text = str(email_text or "").strip()
        if not text:
            raise ValueError("Email content is required.")

        user_prompt = f"Extract shipping information from this email:\n\n{text}"
        if container_name:
            user_prompt = f"Container: {container_name}\n\n{user_prompt}"

        try:
            completion = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=EXTRACTION_TEMPERATURE,
                max_tokens=EXTRACTION_MAX_TOKENS,
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            raise ExtractionError("Failed to parse email.") from exc

        try:
            response_text = completion.choices[0].message.content
        except (AttributeError, IndexError) as exc:
            raise ExtractionError("No response from AI.") from exc
        if not response_text:
            raise ExtractionError("No response from AI.")

        try:
            payload = json.loads(strip_code_fences(response_text))
        except ValueError as exc:
            raise ExtractionError("The AI response was not valid JSON.") from exc
        if not isinstance(payload, dict):
            raise ExtractionError("The AI response was not a JSON object.")
        return draft_from_extraction(payload)
