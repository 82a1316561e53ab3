import json
import unittest
from types import SimpleNamespace
from unittest import mock

from cargotrol.config import AppConfig
from cargotrol.email_extraction import (
    EXTRACTION_MAX_TOKENS,
    EXTRACTION_TEMPERATURE,
    SYSTEM_PROMPT,
    EmailExtractionClient,
    ExtractionError,
    strip_code_fences,
)
from cargotrol.models import AWAITING_NONE, Status

SAMPLE_EMAIL = """Hi team,
Order PO-7781 from Ningbo Lights is packed: 42 cartons, 3.4 CBM, GW 610 kg.
Goods value USD 12,400, freight quoted at 950. Waiting on your payment before loading.
Client: Harbor Retail"""


def completion(content: object) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class EmailExtractionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.openai_client = mock.MagicMock()
        self.create = self.openai_client.chat.completions.create
        self.extractor = EmailExtractionClient(self.openai_client, model="gpt-4o-mini")

    def test_extract_builds_draft_from_model_json(self) -> None:
        self.create.return_value = completion(
            json.dumps(
                {
                    "referenceCode": "PO-7781",
                    "supplier": "Ningbo Lights",
                    "cbm": 3.4,
                    "cartons": "42",
                    "grossWeight": "610",
                    "productCost": "$12,400",
                    "freightCost": 950,
                    "client": "Harbor Retail",
                    "status": "Need Payment",
                    "awaiting": "Payment",
                }
            )
        )

        draft = self.extractor.extract(SAMPLE_EMAIL, container_name="I110.12 NORTH")

        self.assertEqual(draft["reference_code"], "PO-7781")
        self.assertEqual(draft["supplier"], "Ningbo Lights")
        self.assertEqual(draft["cbm"], 3.4)
        self.assertEqual(draft["cartons"], 42)
        self.assertEqual(draft["gross_weight"], 610.0)
        self.assertEqual(draft["product_cost"], 12400.0)
        self.assertEqual(draft["freight_cost"], 950.0)
        self.assertEqual(draft["status"], Status.NEED_PAYMENT)
        self.assertEqual(draft["awaiting"], ("Payment",))

        kwargs = self.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["temperature"], EXTRACTION_TEMPERATURE)
        self.assertEqual(kwargs["max_tokens"], EXTRACTION_MAX_TOKENS)
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": SYSTEM_PROMPT})
        self.assertIn("Container: I110.12 NORTH", kwargs["messages"][1]["content"])
        self.assertIn("PO-7781", kwargs["messages"][1]["content"])

    def test_missing_fields_fall_back_to_defaults(self) -> None:
        self.create.return_value = completion('```json\n{"supplier": "Acme", "cbm": null, "status": "unknown"}\n```')

        draft = self.extractor.extract("Acme will ship soon.")

        self.assertEqual(draft["supplier"], "Acme")
        self.assertEqual(draft["reference_code"], "")
        self.assertEqual(draft["cbm"], 0.0)
        self.assertEqual(draft["cartons"], 0)
        self.assertEqual(draft["status"], Status.PENDING)
        self.assertEqual(draft["awaiting"], (AWAITING_NONE,))

    def test_blank_email_is_rejected_without_a_request(self) -> None:
        with self.assertRaises(ValueError):
            self.extractor.extract("   ")
        self.create.assert_not_called()

    def test_request_failure_raises_extraction_error(self) -> None:
        self.create.side_effect = RuntimeError("rate limited")
        with self.assertRaises(ExtractionError) as raised:
            self.extractor.extract(SAMPLE_EMAIL)
        self.assertEqual(str(raised.exception), "Failed to parse email.")

    def test_empty_or_invalid_responses_raise(self) -> None:
        self.create.return_value = completion(None)
        with self.assertRaisesRegex(ExtractionError, "No response"):
            self.extractor.extract(SAMPLE_EMAIL)

        self.create.return_value = SimpleNamespace(choices=[])
        with self.assertRaisesRegex(ExtractionError, "No response"):
            self.extractor.extract(SAMPLE_EMAIL)

        self.create.return_value = completion("Sure! The supplier is Acme.")
        with self.assertRaisesRegex(ExtractionError, "not valid JSON"):
            self.extractor.extract(SAMPLE_EMAIL)

        self.create.return_value = completion("[1, 2]")
        with self.assertRaisesRegex(ExtractionError, "not a JSON object"):
            self.extractor.extract(SAMPLE_EMAIL)

    def test_strip_code_fences(self) -> None:
        self.assertEqual(strip_code_fences('```json\n{"a": 1}\n```'), '{"a": 1}')
        self.assertEqual(strip_code_fences('```\n{"a": 1}```'), '{"a": 1}')
        self.assertEqual(strip_code_fences(' {"a": 1} '), '{"a": 1}')

    def test_from_config_requires_api_key(self) -> None:
        with self.assertRaises(ExtractionError):
            EmailExtractionClient.from_config(AppConfig())

    def test_from_config_builds_openai_client(self) -> None:
        config = AppConfig(openai_api_key="sk-test", openai_model="gpt-4o", api_base_url="https://proxy.local/v1")
        with mock.patch("openai.OpenAI") as openai_class:
            extractor = EmailExtractionClient.from_config(config)

        openai_class.assert_called_once_with(api_key="sk-test", base_url="https://proxy.local/v1")
        self.assertIs(extractor.client, openai_class.return_value)
        self.assertEqual(extractor.model, "gpt-4o")


if __name__ == "__main__":
    unittest.main()
