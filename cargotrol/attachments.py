from __future__ import annotations

import base64
from enum import Enum
from typing import Any

from cargotrol.blobs import (
    DEFAULT_MIME_TYPE,
    EXTENSION_MIME_TYPES,
    BlobStorageClient,
    ObjectUrlRegistry,
    fetch_url_bytes,
    filename_extension,
    is_blob_storage_url,
    is_object_url,
    mime_for_filename,
)
from cargotrol.models import ATTACHMENT_LABELS, Attachment, LocalPending, Remote
from cargotrol.runtime_log import log_runtime_error


class PreviewKind(str, Enum):
    PDF = "pdf"
    SPREADSHEET = "spreadsheet"
    DOCUMENT = "document"
    IMAGE = "image"
    OTHER = "other"


# Checked in this order; the first match wins.
PREVIEW_NAME_KEYWORDS: list[tuple[PreviewKind, tuple[str, ...]]] = [
    (PreviewKind.PDF, ("pdf",)),
    (PreviewKind.SPREADSHEET, ("excel", "xlsx", "xls")),
    (PreviewKind.DOCUMENT, ("word", "docx", "doc")),
    (PreviewKind.IMAGE, ("image", "jpg", "jpeg", "png", "gif")),
]
PREVIEW_URL_EXTENSIONS: list[tuple[PreviewKind, tuple[str, ...]]] = [
    (PreviewKind.PDF, ("pdf",)),
    (PreviewKind.SPREADSHEET, ("xlsx", "xls")),
    (PreviewKind.DOCUMENT, ("docx", "doc")),
    (PreviewKind.IMAGE, ("jpg", "jpeg", "png", "gif")),
]
PREVIEW_MIME_KINDS: dict[str, PreviewKind] = {
    "application/pdf": PreviewKind.PDF,
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": PreviewKind.SPREADSHEET,
    "application/vnd.ms-excel": PreviewKind.SPREADSHEET,
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": PreviewKind.DOCUMENT,
    "application/msword": PreviewKind.DOCUMENT,
}


def preview_kind_for_mime(mime_type: str | None) -> PreviewKind | None:
    normalized = str(mime_type or "").split(";", 1)[0].strip().lower()
    if not normalized or normalized == DEFAULT_MIME_TYPE:
        return None
    if normalized in PREVIEW_MIME_KINDS:
        return PREVIEW_MIME_KINDS[normalized]
    if normalized.startswith("image/"):
        return PreviewKind.IMAGE
    return PreviewKind.OTHER


def classify_attachment(name: str, url: str = "", mime_type: str | None = None) -> PreviewKind:
    """Pick how an attachment is previewed.

    A known MIME type decides outright. Otherwise the file name is searched
    for keywords, and only then is the URL's extension consulted.
    """
    by_mime = preview_kind_for_mime(mime_type)
    if by_mime is not None:
        return by_mime

    folded_name = str(name or "").casefold()
    for kind, keywords in PREVIEW_NAME_KEYWORDS:
        if any(keyword in folded_name for keyword in keywords):
            return kind

    url_path = str(url or "").split("?", 1)[0].split("#", 1)[0]
    if not is_object_url(url_path) and not url_path.startswith("data:"):
        url_extension = filename_extension(url_path)
        for kind, extensions in PREVIEW_URL_EXTENSIONS:
            if url_extension in extensions:
                return kind
    return PreviewKind.OTHER


def encode_attachment_payload(name: str, data: bytes, mime_type: str) -> dict[str, Any]:
    return {
        "name": name,
        "mimeType": mime_type or DEFAULT_MIME_TYPE,
        "sizeBytes": len(data),
        "data": base64.b64encode(data).decode("ascii"),
    }


def describe_attachment_kind(field_name: str) -> str:
    return ATTACHMENT_LABELS.get(field_name, field_name.replace("_", " ").title())


class AttachmentResolver:
    """Stages picked files as object URLs and turns them into storable values.

    With a blob storage client the bytes are uploaded and stored as
    ``{"url", "name"}``; without one the bytes are embedded in the row.
    """

    def __init__(self, registry: ObjectUrlRegistry, blob_client: BlobStorageClient | None = None) -> None:
        self.registry = registry
        self.blob_client = blob_client

    def stage(self, name: str, data: bytes, mime_type: str | None = None) -> LocalPending:
        resolved_type = mime_type or mime_for_filename(name)
        return LocalPending(url=self.registry.create(data, resolved_type), name=name)

    def storable_value(self, name: str, data: bytes, mime_type: str | None = None) -> dict[str, Any]:
        resolved_type = mime_type or mime_for_filename(name)
        if self.blob_client is not None:
            url = self.blob_client.upload(name, data, resolved_type)
            return {"url": url, "name": name}
        return encode_attachment_payload(name, data, resolved_type)

    def finalize(self, staged: LocalPending, stored_value: dict[str, Any]) -> Remote:
        """The persisted form of ``staged``; its object URL is dropped when superseded."""
        url = str(stored_value.get("url", "")).strip()
        if url:
            self.registry.revoke(staged.url)
            return Remote(url=url, name=staged.name)
        # Embedded payloads keep displaying through the staged object URL.
        return Remote(url=staged.url, name=staged.name)

    def release(self, attachment: Attachment) -> None:
        url = getattr(attachment, "url", "")
        if url and is_object_url(url):
            self.registry.revoke(url)

    def read(self, attachment: Attachment) -> tuple[bytes, str]:
        url = getattr(attachment, "url", "")
        if not url:
            raise LookupError("Attachment has no content.")
        data, mime_type = fetch_url_bytes(url, self.registry)
        if mime_type == DEFAULT_MIME_TYPE:
            guessed = EXTENSION_MIME_TYPES.get(filename_extension(getattr(attachment, "name", "")))
            mime_type = guessed or mime_type
        return data, mime_type

    def delete_remote(self, attachment: Attachment) -> None:
        """Remove the stored blob behind ``attachment``; failures are only logged."""
        url = getattr(attachment, "url", "")
        if self.blob_client is None or not url or not is_blob_storage_url(url):
            return
        try:
            self.blob_client.delete(url)
        except Exception as exc:
            log_runtime_error("attachments.delete_remote", exc)
