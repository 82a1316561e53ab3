import json
import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock
from urllib.error import URLError

from cargotrol import blobs
from cargotrol.attachments import AttachmentResolver, PreviewKind, classify_attachment, encode_attachment_payload
from cargotrol.blobs import BlobStorageClient, BlobStorageError, ObjectUrlRegistry
from cargotrol.models import ABSENT, LocalPending, Remote


class FakeResponse:
    def __init__(self, body: bytes, content_type: str = "") -> None:
        self.body = body
        self.headers = mock.Mock()
        self.headers.get_content_type.return_value = content_type or "text/plain"

    def read(self) -> bytes:
        return self.body

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *exc_info: object) -> None:
        return None


class PreviewClassificationTests(unittest.TestCase):
    def test_mime_type_is_authoritative(self) -> None:
        self.assertEqual(classify_attachment("scan.png", "https://x/scan.png", "application/pdf"), PreviewKind.PDF)
        self.assertEqual(classify_attachment("report", "", "image/webp"), PreviewKind.IMAGE)
        self.assertEqual(classify_attachment("notes.pdf", "", "text/csv"), PreviewKind.OTHER)

    def test_name_keywords_win_over_url_extension(self) -> None:
        self.assertEqual(classify_attachment("invoice.pdf", "https://x/files/upload.png"), PreviewKind.PDF)
        self.assertEqual(classify_attachment("Excel costing", "https://x/a.pdf"), PreviewKind.SPREADSHEET)
        self.assertEqual(classify_attachment("Word draft", "https://x/a.png"), PreviewKind.DOCUMENT)

    def test_class_order_applies_within_name_keywords(self) -> None:
        # "document.pdf" also contains "doc"; the pdf check comes first.
        self.assertEqual(classify_attachment("document.pdf"), PreviewKind.PDF)
        self.assertEqual(classify_attachment("packing.xlsx"), PreviewKind.SPREADSHEET)
        self.assertEqual(classify_attachment("hbl.docx"), PreviewKind.DOCUMENT)
        self.assertEqual(classify_attachment("photo.JPEG"), PreviewKind.IMAGE)

    def test_url_extension_is_used_when_name_is_silent(self) -> None:
        self.assertEqual(classify_attachment("scan", "https://x/files/scan.PNG?sig=1"), PreviewKind.IMAGE)
        self.assertEqual(classify_attachment("sheet", "https://x/sheet.xls"), PreviewKind.SPREADSHEET)
        self.assertEqual(classify_attachment("attachment", "https://x/file.bin"), PreviewKind.OTHER)
        self.assertEqual(classify_attachment("attachment", "blob:cargotrol/abc"), PreviewKind.OTHER)


class BlobHelperTests(unittest.TestCase):
    def test_mime_extension_table_falls_back_to_bin(self) -> None:
        self.assertEqual(blobs.extension_for_mime("image/jpeg"), "jpg")
        self.assertEqual(blobs.extension_for_mime("application/pdf; charset=binary"), "pdf")
        self.assertEqual(blobs.extension_for_mime("application/x-unknown"), "bin")
        self.assertEqual(blobs.extension_for_mime(None), "bin")

    def test_ensure_filename_extension(self) -> None:
        self.assertEqual(blobs.ensure_filename_extension("Packing", "application/pdf", "Packing_List"), "Packing.pdf")
        self.assertEqual(blobs.ensure_filename_extension("inv.xlsx", "application/pdf", "Invoice"), "inv.xlsx")
        self.assertEqual(blobs.ensure_filename_extension("", "image/png", "HBL"), "HBL.png")
        self.assertEqual(blobs.ensure_filename_extension("a/b", "text/weird", "X"), "a_b.bin")

    def test_object_url_registry_lifecycle(self) -> None:
        registry = ObjectUrlRegistry()
        url = registry.create(b"abc", "text/plain")

        self.assertTrue(blobs.is_object_url(url))
        self.assertIn(url, registry)
        self.assertEqual(registry.resolve(url), (b"abc", "text/plain"))
        self.assertTrue(registry.revoke(url))
        self.assertFalse(registry.revoke(url))
        with self.assertRaises(LookupError):
            registry.resolve(url)

    def test_data_urls_round_trip(self) -> None:
        url = blobs.encode_data_url(b"\x00\x01payload", "application/pdf")
        self.assertEqual(blobs.decode_data_url(url), (b"\x00\x01payload", "application/pdf"))
        self.assertEqual(blobs.decode_data_url("data:,hello%20world"), (b"hello world", "text/plain"))
        with self.assertRaises(ValueError):
            blobs.decode_data_url("data:application/pdf;base64,@@@")

    def test_fetch_remote_url_guesses_type_from_path(self) -> None:
        with mock.patch("cargotrol.blobs.urlopen", return_value=FakeResponse(b"pdf-bytes")) as opened:
            data, mime_type = blobs.fetch_url_bytes("https://example.com/files/pl.pdf?token=1")

        opened.assert_called_once_with("https://example.com/files/pl.pdf?token=1")
        self.assertEqual(data, b"pdf-bytes")
        self.assertEqual(mime_type, "application/pdf")

    def test_fetch_object_url_needs_registry(self) -> None:
        registry = ObjectUrlRegistry()
        url = registry.create(b"x", "image/png")
        self.assertEqual(blobs.fetch_url_bytes(url, registry), (b"x", "image/png"))
        with self.assertRaises(LookupError):
            blobs.fetch_url_bytes(url)

    def test_blob_storage_url_detection(self) -> None:
        self.assertTrue(blobs.is_blob_storage_url("https://abc123.public.blob.vercel-storage.com/documents/a.pdf"))
        self.assertFalse(blobs.is_blob_storage_url("https://example.com/a.pdf"))


class BlobStorageClientTests(unittest.TestCase):
    def test_upload_puts_bytes_and_returns_url(self) -> None:
        client = BlobStorageClient("token-1")
        body = json.dumps({"url": "https://abc.public.blob.vercel-storage.com/documents/x-pl.pdf"}).encode("utf-8")
        with mock.patch("cargotrol.blobs.urlopen", return_value=FakeResponse(body)) as opened:
            url = client.upload("pl.pdf", b"data", "application/pdf")

        request = opened.call_args[0][0]
        self.assertEqual(url, "https://abc.public.blob.vercel-storage.com/documents/x-pl.pdf")
        self.assertEqual(request.get_method(), "PUT")
        self.assertTrue(request.full_url.startswith("https://blob.vercel-storage.com/documents/"))
        self.assertTrue(request.full_url.endswith("-pl.pdf"))
        self.assertEqual(request.get_header("Authorization"), "Bearer token-1")
        self.assertEqual(request.get_header("X-content-type"), "application/pdf")
        self.assertEqual(request.data, b"data")

    def test_upload_failure_raises_blob_storage_error(self) -> None:
        client = BlobStorageClient("token-1")
        with mock.patch("cargotrol.blobs.urlopen", side_effect=URLError("offline")):
            with self.assertRaises(BlobStorageError):
                client.upload("pl.pdf", b"data", "application/pdf")

    def test_delete_posts_url_list(self) -> None:
        client = BlobStorageClient("token-1")
        with mock.patch("cargotrol.blobs.urlopen", return_value=FakeResponse(b"{}")) as opened:
            client.delete("https://abc.public.blob.vercel-storage.com/documents/a.pdf")

        request = opened.call_args[0][0]
        self.assertEqual(request.full_url, "https://blob.vercel-storage.com/delete")
        self.assertEqual(json.loads(request.data), {"urls": ["https://abc.public.blob.vercel-storage.com/documents/a.pdf"]})

    def test_blank_token_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            BlobStorageClient("  ")


class AttachmentResolverTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.env_patch = mock.patch.dict(
            os.environ, {"CARGOTROL_RUNTIME_LOG": str(Path(self.temp_dir.name) / "runtime.log")}
        )
        self.env_patch.start()
        self.registry = ObjectUrlRegistry()
        self.resolver = AttachmentResolver(self.registry)

    def tearDown(self) -> None:
        self.env_patch.stop()
        self.temp_dir.cleanup()

    def test_stage_and_read(self) -> None:
        staged = self.resolver.stage("photo.png", b"\x89PNG")
        self.assertIsInstance(staged, LocalPending)
        self.assertEqual(self.resolver.read(staged), (b"\x89PNG", "image/png"))

    def test_read_absent_attachment_raises(self) -> None:
        with self.assertRaises(LookupError):
            self.resolver.read(ABSENT)

    def test_embedded_payload_shape(self) -> None:
        payload = encode_attachment_payload("a.pdf", b"abc", "application/pdf")
        self.assertEqual(payload, {"name": "a.pdf", "mimeType": "application/pdf", "sizeBytes": 3, "data": "YWJj"})
        self.assertEqual(self.resolver.storable_value("a.pdf", b"abc"), payload)

    def test_finalize_keeps_object_url_for_embedded_payload(self) -> None:
        staged = self.resolver.stage("a.pdf", b"abc")
        persisted = self.resolver.finalize(staged, encode_attachment_payload("a.pdf", b"abc", "application/pdf"))
        self.assertEqual(persisted, Remote(url=staged.url, name="a.pdf"))
        self.assertIn(staged.url, self.registry)

    def test_finalize_revokes_object_url_when_uploaded(self) -> None:
        staged = self.resolver.stage("a.pdf", b"abc")
        persisted = self.resolver.finalize(staged, {"url": "https://cdn/a.pdf", "name": "a.pdf"})
        self.assertEqual(persisted, Remote(url="https://cdn/a.pdf", name="a.pdf"))
        self.assertNotIn(staged.url, self.registry)

    def test_delete_remote_only_touches_blob_storage_and_logs_failures(self) -> None:
        blob_client = mock.Mock()
        blob_client.delete.side_effect = BlobStorageError("Delete failed.")
        resolver = AttachmentResolver(self.registry, blob_client)

        resolver.delete_remote(Remote(url="https://example.com/a.pdf", name="a.pdf"))
        blob_client.delete.assert_not_called()

        resolver.delete_remote(Remote(url="https://abc.public.blob.vercel-storage.com/a.pdf", name="a.pdf"))
        blob_client.delete.assert_called_once_with("https://abc.public.blob.vercel-storage.com/a.pdf")


if __name__ == "__main__":
    unittest.main()
