from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Union


class Status(str, Enum):
    READY_TO_SHIP = "Ready to Ship"
    AWAITING_SUPPLIER = "Awaiting Supplier"
    NEED_PAYMENT = "Need Payment"
    PENDING = "Pending"

    @classmethod
    def parse(cls, value: Any, default: "Status | None" = None) -> "Status":
        fallback = cls.PENDING if default is None else default
        if isinstance(value, Status):
            return value
        text = str(value).strip() if value is not None else ""
        if not text:
            return fallback
        folded = text.casefold()
        for status in cls:
            if folded in {status.value.casefold(), status.name.casefold()}:
                return status
        compact = folded.replace(" ", "").replace("_", "")
        for status in cls:
            if compact == status.value.casefold().replace(" ", ""):
                return status
        return fallback


STATUS_OPTIONS = [status.value for status in Status]

AWAITING_NONE = "-"
AWAITING_OPTIONS = [AWAITING_NONE, "Payment", "Certificates", "Documents", "Inspection", "Customs", "Shipping"]


@dataclass(frozen=True)
class Absent:
    @property
    def is_present(self) -> bool:
        return False


@dataclass(frozen=True)
class LocalPending:
    """Selected locally, displayed through an object URL, not persisted yet."""

    url: str
    name: str

    @property
    def is_present(self) -> bool:
        return True


@dataclass(frozen=True)
class Remote:
    url: str
    name: str

    @property
    def is_present(self) -> bool:
        return True


Attachment = Union[Absent, LocalPending, Remote]
ABSENT = Absent()

# (field name, display label, folder file stem)
ATTACHMENT_FIELDS: list[tuple[str, str, str]] = [
    ("packing_list", "Packing List", "Packing_List"),
    ("commercial_invoice", "Commercial Invoice", "Commercial_Invoice"),
    ("payment", "Payment", "Payment"),
    ("hbl", "HBL", "HBL"),
    ("certificates", "Certificates", "Certificates"),
]
ATTACHMENT_FIELD_NAMES = [name for name, _, _ in ATTACHMENT_FIELDS]
ATTACHMENT_LABELS = {name: label for name, label, _ in ATTACHMENT_FIELDS}
ATTACHMENT_FILE_STEMS = {name: stem for name, _, stem in ATTACHMENT_FIELDS}

FLOAT_FIELDS = {"cbm", "gross_weight", "product_cost", "freight_cost"}
INTEGER_FIELDS = {"cartons", "production_days"}
NUMERIC_EDIT_FIELDS = {"cbm", "cartons", "gross_weight", "product_cost", "freight_cost", "production_days"}
TEXT_FIELDS = {"reference_code", "supplier", "production_ready", "client"}
EDITABLE_FIELDS = TEXT_FIELDS | NUMERIC_EDIT_FIELDS | {"status", "awaiting"}


@dataclass(frozen=True)
class Container:
    name: str
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True)
class ContainerItem:
    id: int
    container_name: str
    reference_code: str = ""
    supplier: str = ""
    cbm: float = 0.0
    cartons: int = 0
    gross_weight: float = 0.0
    product_cost: float = 0.0
    freight_cost: float = 0.0
    status: Status = Status.PENDING
    awaiting: tuple[str, ...] = (AWAITING_NONE,)
    production_days: int = 0
    production_ready: str = ""
    client: str = ""
    packing_list: Attachment = ABSENT
    commercial_invoice: Attachment = ABSENT
    payment: Attachment = ABSENT
    hbl: Attachment = ABSENT
    certificates: Attachment = ABSENT
    created_at: str = ""
    updated_at: str = ""

    def attachment(self, field_name: str) -> Attachment:
        if field_name not in ATTACHMENT_LABELS:
            raise KeyError(field_name)
        return getattr(self, field_name)

    def attachments(self) -> list[tuple[str, Attachment]]:
        return [
            (field_name, getattr(self, field_name))
            for field_name in ATTACHMENT_FIELD_NAMES
            if getattr(self, field_name).is_present
        ]

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments())

    @property
    def total_cost(self) -> float:
        return self.product_cost + self.freight_cost

    @property
    def description(self) -> str:
        return self.reference_code.strip() or self.supplier.strip() or "this item"

    def with_changes(self, **changes: Any) -> "ContainerItem":
        return replace(self, **changes)


def new_item_fields(container_name: str) -> dict[str, Any]:
    """Field values for a freshly added, still empty row."""
    return {
        "container_name": container_name,
        "reference_code": "",
        "supplier": "",
        "cbm": 0.0,
        "cartons": 0,
        "gross_weight": 0.0,
        "product_cost": 0.0,
        "freight_cost": 0.0,
        "status": Status.PENDING,
        "awaiting": (AWAITING_NONE,),
        "production_days": 0,
        "production_ready": "",
        "client": "",
    }


@dataclass
class SummaryMetrics:
    total_cbm: float = 0.0
    total_cartons: int = 0
    total_gross_weight: float = 0.0
    cbm_ready_to_ship: float = 0.0
    cbm_awaiting_supplier: float = 0.0
    need_payment_count: int = 0
    total_product_cost: float = 0.0
    total_freight_cost: float = 0.0

    @property
    def total_cost(self) -> float:
        return self.total_product_cost + self.total_freight_cost


def summarize_items(items: list[ContainerItem]) -> SummaryMetrics:
    metrics = SummaryMetrics()
    for item in items:
        metrics.total_cbm += item.cbm
        metrics.total_cartons += item.cartons
        metrics.total_gross_weight += item.gross_weight
        metrics.total_product_cost += item.product_cost
        metrics.total_freight_cost += item.freight_cost
        if item.status == Status.READY_TO_SHIP:
            metrics.cbm_ready_to_ship += item.cbm
        elif item.status == Status.AWAITING_SUPPLIER:
            metrics.cbm_awaiting_supplier += item.cbm
        elif item.status == Status.NEED_PAYMENT:
            metrics.need_payment_count += 1
    return metrics
