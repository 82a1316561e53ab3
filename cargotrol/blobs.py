from __future__ import annotations

import base64
import binascii
import json
import mimetypes
from pathlib import PurePosixPath
import re
from urllib.error import URLError
from urllib.parse import quote, unquote_to_bytes
from urllib.request import Request, urlopen
from uuid import uuid4

OBJECT_URL_PREFIX = "blob:cargotrol/"
DEFAULT_MIME_TYPE = "application/octet-stream"
DEFAULT_EXTENSION = "bin"

# Closed MIME <-> extension table; first extension listed is the canonical one.
MIME_EXTENSIONS: dict[str, tuple[str, ...]] = {
    "application/pdf": ("pdf",),
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ("xlsx",),
    "application/vnd.ms-excel": ("xls",),
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ("docx",),
    "application/msword": ("doc",),
    "image/jpeg": ("jpg", "jpeg"),
    "image/png": ("png",),
    "image/gif": ("gif",),
    "text/csv": ("csv",),
    "text/plain": ("txt",),
    "application/zip": ("zip",),
}
EXTENSION_MIME_TYPES: dict[str, str] = {
    extension: mime_type
    for mime_type, extensions in MIME_EXTENSIONS.items()
    for extension in extensions
}

VERCEL_BLOB_API_URL = "https://blob.vercel-storage.com"
VERCEL_BLOB_API_VERSION = "7"
VERCEL_BLOB_HOST_SUFFIX = ".blob.vercel-storage.com"


class BlobStorageError(RuntimeError):
    pass


def extension_for_mime(mime_type: str | None) -> str:
    normalized = str(mime_type or "").split(";", 1)[0].strip().lower()
    extensions = MIME_EXTENSIONS.get(normalized)
    return extensions[0] if extensions else DEFAULT_EXTENSION


def filename_extension(name: str) -> str:
    suffix = PurePosixPath(str(name).strip()).suffix
    return suffix[1:].lower() if len(suffix) > 1 else ""


def mime_for_filename(name: str) -> str:
    extension = filename_extension(name)
    if extension in EXTENSION_MIME_TYPES:
        return EXTENSION_MIME_TYPES[extension]
    guessed, _ = mimetypes.guess_type(str(name))
    return guessed or DEFAULT_MIME_TYPE


def ensure_filename_extension(name: str, mime_type: str | None, fallback_stem: str) -> str:
    cleaned = str(name or "").strip().replace("/", "_").replace("\\", "_")
    if not cleaned:
        return f"{fallback_stem}.{extension_for_mime(mime_type)}"
    if filename_extension(cleaned):
        return cleaned
    return f"{cleaned}.{extension_for_mime(mime_type)}"


def is_object_url(url: str) -> bool:
    return str(url).startswith(OBJECT_URL_PREFIX)


class ObjectUrlRegistry:
    """In-memory stand-in for browser object URLs (``blob:`` references)."""

    def __init__(self) -> None:
        self._entries: dict[str, tuple[bytes, str]] = {}

    def create(self, data: bytes, mime_type: str = DEFAULT_MIME_TYPE) -> str:
        url = f"{OBJECT_URL_PREFIX}{uuid4().hex}"
        self._entries[url] = (bytes(data), mime_type or DEFAULT_MIME_TYPE)
        return url

    def resolve(self, url: str) -> tuple[bytes, str]:
        try:
            return self._entries[url]
        except KeyError:
            raise LookupError(f"Object URL `{url}` was revoked or never created.") from None

    def revoke(self, url: str) -> bool:
        return self._entries.pop(url, None) is not None

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def __len__(self) -> int:
        return len(self._entries)


def decode_data_url(url: str) -> tuple[bytes, str]:
    match = re.match(r"^data:([^,]*?),(.*)$", url, flags=re.DOTALL)
    if not match:
        raise ValueError("Malformed data URL.")
    header, payload = match.groups()
    is_base64 = header.endswith(";base64")
    mime_type = header[: -len(";base64")] if is_base64 else header
    if is_base64:
        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"Malformed base64 data URL: {exc}") from exc
    else:
        data = unquote_to_bytes(payload)
    return data, mime_type or "text/plain"


def encode_data_url(data: bytes, mime_type: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type or DEFAULT_MIME_TYPE};base64,{encoded}"


def fetch_url_bytes(url: str, registry: ObjectUrlRegistry | None = None) -> tuple[bytes, str]:
    """Return ``(content, mime_type)`` for an object URL, data URL or remote URL."""
    target = str(url).strip()
    if not target:
        raise ValueError("Attachment URL is blank.")
    if is_object_url(target):
        if registry is None:
            raise LookupError("Object URLs need a registry to resolve.")
        return registry.resolve(target)
    if target.startswith("data:"):
        return decode_data_url(target)

    with urlopen(target) as response:
        content_type = response.headers.get_content_type() if response.headers else ""
        body = response.read()
    if not content_type or content_type == "text/plain":
        guessed = mime_for_filename(target.split("?", 1)[0])
        content_type = guessed if guessed != DEFAULT_MIME_TYPE else (content_type or DEFAULT_MIME_TYPE)
    return body, content_type


def is_blob_storage_url(url: str) -> bool:
    host = re.sub(r"^https?://", "", str(url).strip()).split("/", 1)[0].lower()
    return host.endswith(VERCEL_BLOB_HOST_SUFFIX)


class BlobStorageClient:
    """Minimal Vercel Blob client: public uploads and deletes."""

    def __init__(self, token: str, api_url: str = VERCEL_BLOB_API_URL, folder: str = "documents") -> None:
        if not str(token).strip():
            raise ValueError("Blob storage token is blank.")
        self.token = str(token).strip()
        self.api_url = api_url.rstrip("/")
        self.folder = folder.strip("/")

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "authorization": f"Bearer {self.token}",
            "x-api-version": VERCEL_BLOB_API_VERSION,
        }
        if extra:
            headers.update(extra)
        return headers

    def upload(self, name: str, data: bytes, mime_type: str) -> str:
        safe_name = re.sub(r"[^A-Za-z0-9._-]+", "_", str(name).strip()) or "file"
        pathname = f"{self.folder}/{uuid4().hex[:8]}-{safe_name}" if self.folder else safe_name
        request = Request(
            f"{self.api_url}/{quote(pathname)}",
            data=bytes(data),
            method="PUT",
            headers=self._headers(
                {
                    "x-content-type": mime_type or DEFAULT_MIME_TYPE,
                    "x-add-random-suffix": "0",
                }
            ),
        )
        try:
            with urlopen(request) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except (URLError, ValueError) as exc:
            raise BlobStorageError(f"Upload of `{name}` failed.") from exc

        url = str(payload.get("url", "")).strip() if isinstance(payload, dict) else ""
        if not url:
            raise BlobStorageError(f"Upload of `{name}` returned no URL.")
        return url

    def delete(self, url: str) -> None:
        request = Request(
            f"{self.api_url}/delete",
            data=json.dumps({"urls": [url]}).encode("utf-8"),
            method="POST",
            headers=self._headers({"content-type": "application/json"}),
        )
        try:
            with urlopen(request) as response:
                response.read()
        except URLError as exc:
            raise BlobStorageError(f"Delete of `{url}` failed.") from exc
