import base64
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from cargotrol import mapper
from cargotrol.blobs import ObjectUrlRegistry
from cargotrol.models import ABSENT, AWAITING_NONE, LocalPending, Remote, Status


class FieldMapperTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.log_path = Path(self.temp_dir.name) / "runtime.log"
        self.env_patch = mock.patch.dict(os.environ, {"CARGOTROL_RUNTIME_LOG": str(self.log_path)})
        self.env_patch.start()
        self.registry = ObjectUrlRegistry()

    def tearDown(self) -> None:
        self.env_patch.stop()
        self.temp_dir.cleanup()

    def test_row_to_item_accepts_store_and_camel_case_keys(self) -> None:
        item = mapper.row_to_item(
            {
                "id": 7,
                "container_name": "I110.12 NORTH",
                "referenceCode": "PO-9",
                "supplier": " Acme ",
                "cbm": "2.75",
                "cartons": "12.6",
                "grossWeight": "1,250",
                "product_cost": "$3,100.50",
                "freight_cost": None,
                "status": "awaiting supplier",
                "awaiting": ["Payment", "Customs"],
                "production_days": 30,
                "production_ready": "2026-11-01",
                "client": "Zeta",
                "created_at": "2026-10-01T10:00:00",
            },
            self.registry,
        )

        self.assertEqual(item.id, 7)
        self.assertEqual(item.reference_code, "PO-9")
        self.assertEqual(item.supplier, "Acme")
        self.assertEqual(item.cbm, 2.75)
        self.assertEqual(item.cartons, 13)
        self.assertEqual(item.gross_weight, 1250.0)
        self.assertEqual(item.product_cost, 3100.5)
        self.assertEqual(item.freight_cost, 0.0)
        self.assertEqual(item.status, Status.AWAITING_SUPPLIER)
        self.assertEqual(item.awaiting, ("Payment", "Customs"))
        self.assertEqual(item.attachments(), [])

    def test_unparseable_numbers_become_zero(self) -> None:
        self.assertEqual(mapper.parse_float("abc"), 0.0)
        self.assertEqual(mapper.parse_float(""), 0.0)
        self.assertEqual(mapper.parse_float(float("nan")), 0.0)
        self.assertEqual(mapper.parse_int("n/a"), 0)
        self.assertEqual(mapper.coerce_field_value("grossWeight", "abc"), 0.0)
        self.assertEqual(mapper.coerce_field_value("production_days", "4.4"), 4)

    def test_unknown_status_defaults_to_pending(self) -> None:
        item = mapper.row_to_item({"id": 1, "status": "Lost at sea"}, self.registry)
        self.assertEqual(item.status, Status.PENDING)
        self.assertEqual(item.awaiting, (AWAITING_NONE,))

    def test_split_awaiting(self) -> None:
        self.assertEqual(mapper.split_awaiting("Payment, Customs"), ("Payment", "Customs"))
        self.assertEqual(mapper.split_awaiting(""), (AWAITING_NONE,))
        self.assertEqual(mapper.split_awaiting([]), (AWAITING_NONE,))
        self.assertEqual(mapper.join_awaiting(("Payment", "Customs")), "Payment, Customs")

    def test_remote_attachment_passes_through(self) -> None:
        attachment = mapper.normalize_attachment({"url": "https://example.com/files/pl.pdf", "name": "pl.pdf"}, self.registry)
        self.assertEqual(attachment, Remote(url="https://example.com/files/pl.pdf", name="pl.pdf"))

    def test_legacy_string_attachment_is_treated_as_url(self) -> None:
        attachment = mapper.normalize_attachment("https://example.com/files/hbl.pdf", self.registry)
        self.assertEqual(attachment, Remote(url="https://example.com/files/hbl.pdf", name="hbl.pdf"))
        self.assertEqual(mapper.normalize_attachment(None, self.registry), ABSENT)
        self.assertEqual(mapper.normalize_attachment("", self.registry), ABSENT)

    def test_embedded_payload_is_decoded_into_object_url(self) -> None:
        payload = {
            "name": "invoice.pdf",
            "mimeType": "application/pdf",
            "sizeBytes": 5,
            "data": base64.b64encode(b"%PDF-").decode("ascii"),
        }
        attachment = mapper.normalize_attachment(payload, self.registry)

        self.assertIsInstance(attachment, Remote)
        self.assertEqual(attachment.name, "invoice.pdf")
        self.assertEqual(self.registry.resolve(attachment.url), (b"%PDF-", "application/pdf"))

    def test_undecodable_payload_becomes_absent_and_is_logged(self) -> None:
        attachment = mapper.normalize_attachment({"name": "broken.pdf", "data": "not base64!!"}, self.registry)

        self.assertEqual(attachment, ABSENT)
        self.assertEqual(len(self.registry), 0)
        self.assertIn("[WARN]", self.log_path.read_text(encoding="utf-8"))

    def test_patch_to_row_translates_names_and_values(self) -> None:
        row = mapper.patch_to_row(
            {
                "referenceCode": "PO-1",
                "status": Status.READY_TO_SHIP,
                "awaiting": ("Payment",),
                "cartons": "7",
                "hbl": ABSENT,
                "payment": Remote(url="https://example.com/p.pdf", name="p.pdf"),
            }
        )
        self.assertEqual(
            row,
            {
                "reference_code": "PO-1",
                "status": "Ready to Ship",
                "awaiting": ["Payment"],
                "cartons": 7,
                "hbl": None,
                "payment": {"url": "https://example.com/p.pdf", "name": "p.pdf"},
            },
        )

    def test_patch_to_row_rejects_unknown_fields(self) -> None:
        with self.assertRaises(KeyError):
            mapper.patch_to_row({"product": "Widgets"})

    def test_pending_attachment_has_no_storable_form(self) -> None:
        with self.assertRaises(ValueError):
            mapper.attachment_to_store(LocalPending(url="blob:cargotrol/abc", name="a.pdf"))

    def test_item_to_row_round_trips(self) -> None:
        original = {
            "id": 3,
            "container_name": "C1",
            "reference_code": "PO-3",
            "supplier": "Acme",
            "cbm": 1.25,
            "cartons": 4,
            "gross_weight": 80.0,
            "product_cost": 10.0,
            "freight_cost": 2.5,
            "status": "Need Payment",
            "awaiting": ["Payment"],
            "production_days": 12,
            "production_ready": "2026-12-01",
            "client": "Zeta",
            "packing_list": {"url": "https://example.com/pl.pdf", "name": "pl.pdf"},
            "commercial_invoice": None,
            "payment": None,
            "hbl": None,
            "certificates": None,
        }
        item = mapper.row_to_item(original, self.registry)
        self.assertEqual(mapper.item_to_row(item), original)


if __name__ == "__main__":
    unittest.main()
