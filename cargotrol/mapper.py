"""Translation between store rows (snake_case JSON) and ``ContainerItem``.

Store rows come from the ``container_items`` table. Attachment columns hold
either ``{"url", "name"}`` or an embedded payload
``{"name", "mimeType", "sizeBytes", "data"}`` where ``data`` is base64. Embedded
payloads are decoded into object URLs on the way in so every attachment the
table sees is a ``Remote(url, name)``.
"""

from __future__ import annotations

import base64
import binascii
import math
import re
from typing import Any, Mapping

from cargotrol.blobs import DEFAULT_MIME_TYPE, ObjectUrlRegistry, mime_for_filename
from cargotrol.models import (
    ABSENT,
    ATTACHMENT_FIELD_NAMES,
    AWAITING_NONE,
    FLOAT_FIELDS,
    INTEGER_FIELDS,
    Absent,
    Attachment,
    Container,
    ContainerItem,
    LocalPending,
    Remote,
    Status,
)
from cargotrol.runtime_log import log_runtime_warning

FIELD_NAME_MAP: dict[str, str] = {
    "id": "id",
    "containerName": "container_name",
    "referenceCode": "reference_code",
    "supplier": "supplier",
    "cbm": "cbm",
    "cartons": "cartons",
    "grossWeight": "gross_weight",
    "productCost": "product_cost",
    "freightCost": "freight_cost",
    "status": "status",
    "awaiting": "awaiting",
    "productionDays": "production_days",
    "productionReady": "production_ready",
    "client": "client",
    "packingList": "packing_list",
    "commercialInvoice": "commercial_invoice",
    "payment": "payment",
    "hbl": "hbl",
    "certificates": "certificates",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}
STORE_FIELD_NAMES = set(FIELD_NAME_MAP.values())
CAMEL_FIELD_NAMES = {snake: camel for camel, snake in FIELD_NAME_MAP.items()}


def to_store_key(key: str) -> str:
    text = str(key).strip()
    if text in STORE_FIELD_NAMES:
        return text
    if text in FIELD_NAME_MAP:
        return FIELD_NAME_MAP[text]
    raise KeyError(f"Unknown container item field `{key}`.")


def to_camel_key(key: str) -> str:
    return CAMEL_FIELD_NAMES[to_store_key(key)]


def parse_float(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default

    if isinstance(value, str):
        cleaned = value.strip().replace("$", "").replace(",", "")
        if not cleaned:
            return default
        match = re.match(r"^[+-]?(\d+(\.\d*)?|\.\d+)([eE][+-]?\d+)?", cleaned)
        if not match:
            return default
        parsed = float(match.group(0))
    else:
        try:
            parsed = float(value)
        except (TypeError, ValueError):
            return default

    if math.isnan(parsed) or math.isinf(parsed):
        return default
    return parsed


def parse_int(value: Any, default: int = 0) -> int:
    return int(round(parse_float(value, default=float(default))))


def clean_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        if math.isnan(value):
            return ""
        if value.is_integer():
            return str(int(value))
    return str(value).strip()


def split_awaiting(value: Any) -> tuple[str, ...]:
    if value is None:
        return (AWAITING_NONE,)
    if isinstance(value, (list, tuple)):
        tags = [clean_text(tag) for tag in value]
    else:
        tags = [token.strip() for token in clean_text(value).split(",")]
    tags = [tag for tag in tags if tag]
    return tuple(tags) if tags else (AWAITING_NONE,)


def join_awaiting(tags: tuple[str, ...] | list[str]) -> str:
    return ", ".join(tags)


def coerce_field_value(field_name: str, raw_value: Any) -> Any:
    """Type a raw UI value for ``field_name``; numbers fall back to zero."""
    store_key = to_store_key(field_name)
    if store_key in FLOAT_FIELDS:
        return parse_float(raw_value, 0.0)
    if store_key in INTEGER_FIELDS:
        return parse_int(raw_value, 0)
    if store_key == "status":
        return Status.parse(raw_value)
    if store_key == "awaiting":
        return split_awaiting(raw_value)
    if store_key in ATTACHMENT_FIELD_NAMES:
        return raw_value
    return clean_text(raw_value)


def decode_embedded_payload(payload: Mapping[str, Any], registry: ObjectUrlRegistry) -> Remote:
    name = clean_text(payload.get("name")) or "attachment"
    mime_type = clean_text(payload.get("type") or payload.get("mimeType")) or mime_for_filename(name)
    data_text = str(payload.get("data", ""))
    if data_text.startswith("data:") and "," in data_text:
        data_text = data_text.split(",", 1)[1]
    content = base64.b64decode(data_text, validate=True)
    return Remote(url=registry.create(content, mime_type or DEFAULT_MIME_TYPE), name=name)


def normalize_attachment(value: Any, registry: ObjectUrlRegistry, context: str = "attachment") -> Attachment:
    if value is None or value == "":
        return ABSENT
    if isinstance(value, (Absent, LocalPending, Remote)):
        return value
    if isinstance(value, str):
        # Legacy rows stored the bare URL.
        url = value.strip()
        return Remote(url=url, name=url.rsplit("/", 1)[-1] or "attachment") if url else ABSENT
    if isinstance(value, Mapping):
        if value.get("data"):
            try:
                return decode_embedded_payload(value, registry)
            except (binascii.Error, ValueError, TypeError) as exc:
                log_runtime_warning(context, f"Could not decode embedded attachment: {exc}")
                return ABSENT
        url = clean_text(value.get("url"))
        if url:
            return Remote(url=url, name=clean_text(value.get("name")) or url.rsplit("/", 1)[-1])
    log_runtime_warning(context, f"Unrecognized attachment value of type {type(value).__name__}.")
    return ABSENT


def attachment_to_store(attachment: Attachment) -> dict[str, str] | None:
    if isinstance(attachment, Remote):
        return {"url": attachment.url, "name": attachment.name}
    if isinstance(attachment, LocalPending):
        raise ValueError("A pending local attachment has no storable representation.")
    return None


def row_to_item(row: Mapping[str, Any], registry: ObjectUrlRegistry) -> ContainerItem:
    normalized = {to_store_key(key): value for key, value in row.items() if key in FIELD_NAME_MAP or key in STORE_FIELD_NAMES}
    item_id = parse_int(normalized.get("id"), 0)
    context = f"mapper.row_to_item.{item_id}"
    attachments = {
        field_name: normalize_attachment(normalized.get(field_name), registry, context=f"{context}.{field_name}")
        for field_name in ATTACHMENT_FIELD_NAMES
    }
    return ContainerItem(
        id=item_id,
        container_name=clean_text(normalized.get("container_name")),
        reference_code=clean_text(normalized.get("reference_code")),
        supplier=clean_text(normalized.get("supplier")),
        cbm=parse_float(normalized.get("cbm")),
        cartons=parse_int(normalized.get("cartons")),
        gross_weight=parse_float(normalized.get("gross_weight")),
        product_cost=parse_float(normalized.get("product_cost")),
        freight_cost=parse_float(normalized.get("freight_cost")),
        status=Status.parse(normalized.get("status")),
        awaiting=split_awaiting(normalized.get("awaiting")),
        production_days=parse_int(normalized.get("production_days")),
        production_ready=clean_text(normalized.get("production_ready")),
        client=clean_text(normalized.get("client")),
        created_at=clean_text(normalized.get("created_at")),
        updated_at=clean_text(normalized.get("updated_at")),
        **attachments,
    )


def row_to_container(row: Mapping[str, Any]) -> Container:
    return Container(
        name=clean_text(row.get("name")),
        created_at=clean_text(row.get("created_at")),
        updated_at=clean_text(row.get("updated_at")),
    )


def value_to_store(store_key: str, value: Any) -> Any:
    if store_key == "status":
        return Status.parse(value).value
    if store_key == "awaiting":
        return list(split_awaiting(value))
    if store_key in FLOAT_FIELDS:
        return parse_float(value)
    if store_key in INTEGER_FIELDS:
        return parse_int(value)
    if store_key in ATTACHMENT_FIELD_NAMES:
        if isinstance(value, (Absent, LocalPending, Remote)):
            return attachment_to_store(value)
        # Already a storable dict (embedded payload or {url, name}) or None.
        return value
    if store_key == "id":
        return parse_int(value)
    return clean_text(value)


def patch_to_row(patch: Mapping[str, Any]) -> dict[str, Any]:
    """Map a partial ``{field: value}`` update to the store's column names."""
    row: dict[str, Any] = {}
    for key, value in patch.items():
        store_key = to_store_key(key)
        if store_key in {"id", "created_at", "updated_at"}:
            continue
        row[store_key] = value_to_store(store_key, value)
    return row


def item_fields_to_row(fields: Mapping[str, Any]) -> dict[str, Any]:
    row = patch_to_row(fields)
    row.setdefault("awaiting", [AWAITING_NONE])
    row.setdefault("status", Status.PENDING.value)
    return row


def item_to_row(item: ContainerItem) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": item.id,
        "container_name": item.container_name,
        "reference_code": item.reference_code,
        "supplier": item.supplier,
        "cbm": item.cbm,
        "cartons": item.cartons,
        "gross_weight": item.gross_weight,
        "product_cost": item.product_cost,
        "freight_cost": item.freight_cost,
        "status": item.status.value,
        "awaiting": list(item.awaiting),
        "production_days": item.production_days,
        "production_ready": item.production_ready,
        "client": item.client,
    }
    for field_name in ATTACHMENT_FIELD_NAMES:
        attachment = getattr(item, field_name)
        row[field_name] = attachment_to_store(attachment) if not isinstance(attachment, LocalPending) else None
    return row
