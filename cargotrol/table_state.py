"""In-memory container table kept in step with the record store.

Every mutating operation follows the same order: check write access, call
the store, and only when the store accepted the change apply it locally.
A failed call leaves the rows untouched and emits an error notice. Picking
an attachment is the single exception: its preview appears before the
store has it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Mapping

from cargotrol.attachments import AttachmentResolver, describe_attachment_kind
from cargotrol.blobs import ObjectUrlRegistry
from cargotrol.config import WriteAccess
from cargotrol.mapper import (
    clean_text,
    coerce_field_value,
    item_fields_to_row,
    join_awaiting,
    patch_to_row,
    row_to_container,
    row_to_item,
    to_store_key,
)
from cargotrol.models import (
    ABSENT,
    ATTACHMENT_FIELD_NAMES,
    AWAITING_NONE,
    EDITABLE_FIELDS,
    Container,
    ContainerItem,
    LocalPending,
    SummaryMetrics,
    new_item_fields,
    summarize_items,
)
from cargotrol.runtime_log import append_runtime_log, log_runtime_error
from cargotrol.store import RecordStoreClient

Notify = Callable[[str, str], None]
Confirm = Callable[[str], bool]

ATTACHMENT_SAVED_NOTICE = "File saved."


def failure_notice(action: str) -> str:
    return f"{action} failed. Please try again."


def delete_item_prompt(item: ContainerItem) -> str:
    return f'Delete Item?\n\nAre you sure you want to delete "{item.description}"?\n\nThis action cannot be undone.'


def delete_attachment_prompt(field_name: str) -> str:
    label = describe_attachment_kind(field_name)
    return f"Delete {label}?\n\nAre you sure you want to delete this {label.lower()}?"


def delete_container_prompt(name: str) -> str:
    return f'Delete container "{name}"?\n\nEvery item in it is deleted as well. This action cannot be undone.'


class ImportMode(str, Enum):
    REPLACE = "replace"
    ADD = "add"


@dataclass
class ImportResult:
    mode: ImportMode
    total: int
    deleted: int = 0
    created: int = 0
    failed: bool = False
    skipped: bool = False

    @property
    def completed(self) -> bool:
        return not self.failed and not self.skipped and self.created == self.total

    def summary_text(self) -> str:
        if self.skipped:
            return "Import skipped."
        parts = []
        if self.mode == ImportMode.REPLACE:
            parts.append(f"removed {self.deleted} existing row(s)")
        parts.append(f"imported {self.created} of {self.total} row(s)")
        text = ", ".join(parts)
        text = text[0].upper() + text[1:]
        if self.failed:
            return f"{text}. Import stopped early. Please try again."
        return f"{text}."


@dataclass
class TableViewState:
    containers: list[Container] = field(default_factory=list)
    selected_container: str = ""
    items: list[ContainerItem] = field(default_factory=list)

    def container_names(self) -> list[str]:
        return [container.name for container in self.containers]

    def has_container(self, name: str) -> bool:
        folded = name.strip().casefold()
        return any(container.name.strip().casefold() == folded for container in self.containers)

    def find_item(self, item_id: int) -> ContainerItem | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def replace_item(self, updated: ContainerItem) -> None:
        self.items = [updated if item.id == updated.id else item for item in self.items]

    def remove_item(self, item_id: int) -> None:
        self.items = [item for item in self.items if item.id != item_id]


@dataclass
class CellEditController:
    """Tracks the single active ``(row_id, field)`` cell and its text buffer."""

    row_id: int | None = None
    field_name: str | None = None
    buffer: str = ""

    @property
    def active(self) -> bool:
        return self.row_id is not None and self.field_name is not None

    def start(self, row_id: int, field_name: str, current_value: Any) -> None:
        # Any previous unsaved buffer is dropped here.
        self.row_id = row_id
        self.field_name = field_name
        if isinstance(current_value, (list, tuple)):
            self.buffer = join_awaiting(list(current_value))
        elif isinstance(current_value, float) and current_value.is_integer():
            self.buffer = str(int(current_value))
        elif hasattr(current_value, "value") and isinstance(getattr(current_value, "value"), str):
            self.buffer = current_value.value
        else:
            self.buffer = "" if current_value is None else str(current_value)

    def is_editing(self, row_id: int, field_name: str) -> bool:
        return self.row_id == row_id and self.field_name == field_name

    def set_buffer(self, value: Any) -> None:
        self.buffer = "" if value is None else str(value)

    def cancel(self) -> None:
        self.row_id = None
        self.field_name = None
        self.buffer = ""


class ContainerTableController:
    def __init__(
        self,
        store: RecordStoreClient,
        write_access: WriteAccess | None = None,
        registry: ObjectUrlRegistry | None = None,
        resolver: AttachmentResolver | None = None,
        notify: Notify | None = None,
    ) -> None:
        self.store = store
        self.write_access = write_access or WriteAccess()
        self.registry = registry or (resolver.registry if resolver is not None else ObjectUrlRegistry())
        self.resolver = resolver or AttachmentResolver(self.registry)
        self.notify: Notify = notify or (lambda level, message: None)
        self.state = TableViewState()
        self.editor = CellEditController()
        # Bumped on every local change to the rows; lets callers key caches of the table.
        self.revision = 0

    def _writable(self) -> bool:
        if self.write_access.allowed:
            return True
        self.notify("info", self.write_access.notice)
        return False

    def _fail(self, context: str, action: str, exc: Exception) -> None:
        log_runtime_error(context, exc)
        self.notify("error", failure_notice(action))

    def _changed(self) -> None:
        self.revision += 1

    def _release_items(self, items: list[ContainerItem]) -> None:
        for item in items:
            for _, attachment in item.attachments():
                self.resolver.release(attachment)

    def summary(self) -> SummaryMetrics:
        return summarize_items(self.state.items)

    # Containers

    def load_containers(self) -> bool:
        try:
            rows = self.store.list_containers()
        except Exception as exc:
            self._fail("table.load_containers", "Loading containers", exc)
            return False
        self.state.containers = [row_to_container(row) for row in rows]
        return True

    def select_container(self, name: str) -> bool:
        target = clean_text(name)
        if not target:
            self._release_items(self.state.items)
            self.state.selected_container = ""
            self.state.items = []
            self.editor.cancel()
            self._changed()
            return True
        try:
            rows = self.store.list_items(target)
        except Exception as exc:
            self._fail("table.select_container", f"Loading `{target}`", exc)
            return False
        self._release_items(self.state.items)
        self.state.selected_container = target
        self.state.items = [row_to_item(row, self.registry) for row in rows]
        self.editor.cancel()
        self._changed()
        return True

    def create_container(self, name: str) -> bool:
        if not self._writable():
            return False
        target = clean_text(name)
        if not target:
            self.notify("warning", "Enter a container name.")
            return False
        if self.state.has_container(target):
            self.notify("warning", f"A container named `{target}` already exists.")
            return False
        try:
            row = self.store.create_container(target)
        except Exception as exc:
            self._fail("table.create_container", "Creating the container", exc)
            return False
        created = row_to_container(row) if row.get("name") else Container(name=target)
        self.state.containers = sorted([*self.state.containers, created], key=lambda container: container.name)
        self._release_items(self.state.items)
        self.state.selected_container = created.name
        self.state.items = []
        self.editor.cancel()
        self._changed()
        append_runtime_log("INFO", "table.create_container", f"Created container `{created.name}`.")
        return True

    def delete_container(self, name: str, confirm: Confirm) -> bool:
        if not self._writable():
            return False
        target = clean_text(name)
        if not target or not confirm(delete_container_prompt(target)):
            return False
        try:
            self.store.delete_container(target)
        except Exception as exc:
            self._fail("table.delete_container", "Deleting the container", exc)
            return False
        self.state.containers = [container for container in self.state.containers if container.name != target]
        if self.state.selected_container == target:
            self._release_items(self.state.items)
            self.state.selected_container = ""
            self.state.items = []
            self.editor.cancel()
            self._changed()
        append_runtime_log("INFO", "table.delete_container", f"Deleted container `{target}`.")
        return True

    # Rows

    def _create_row(self, fields: Mapping[str, Any]) -> ContainerItem:
        row = self.store.create_item(item_fields_to_row(fields))
        return row_to_item(row, self.registry)

    def add_row(self, fields: Mapping[str, Any] | None = None) -> ContainerItem | None:
        if not self._writable():
            return None
        if not self.state.selected_container:
            self.notify("warning", "Select a container first.")
            return None
        values = new_item_fields(self.state.selected_container)
        if fields:
            values.update({to_store_key(key): value for key, value in fields.items()})
            values["container_name"] = self.state.selected_container
        try:
            created = self._create_row(values)
        except Exception as exc:
            self._fail("table.add_row", "Adding the row", exc)
            return None
        self.state.items = [*self.state.items, created]
        self._changed()
        return created

    def add_extracted_row(self, draft: Mapping[str, Any]) -> ContainerItem | None:
        allowed = {key: value for key, value in draft.items() if to_store_key(key) in EDITABLE_FIELDS}
        return self.add_row(allowed)

    def _patch(self, item_id: int, patch: Mapping[str, Any], action: str, context: str) -> ContainerItem | None:
        """Send ``patch`` and apply exactly those fields to the local row."""
        current = self.state.find_item(item_id)
        if current is None:
            self.notify("warning", "That row is no longer loaded.")
            return None
        try:
            self.store.update_item(item_id, patch_to_row(patch))
        except Exception as exc:
            self._fail(context, action, exc)
            return None
        updated = current.with_changes(**{to_store_key(key): value for key, value in patch.items()})
        self.state.replace_item(updated)
        self._changed()
        return updated

    def start_edit(self, row_id: int, field_name: str) -> bool:
        if not self._writable():
            return False
        store_key = to_store_key(field_name)
        item = self.state.find_item(row_id)
        if item is None or store_key not in EDITABLE_FIELDS:
            return False
        self.editor.start(row_id, store_key, getattr(item, store_key))
        return True

    def cancel_edit(self) -> None:
        self.editor.cancel()

    def commit_edit(self, value: Any = None) -> bool:
        if not self._writable():
            return False
        if not self.editor.active:
            return False
        if value is not None:
            self.editor.set_buffer(value)
        row_id = int(self.editor.row_id)
        field_name = str(self.editor.field_name)
        typed_value = coerce_field_value(field_name, self.editor.buffer)
        self.editor.cancel()
        return self._patch(row_id, {field_name: typed_value}, "Saving the change", "table.commit_edit") is not None

    def update_field(self, row_id: int, field_name: str, value: Any) -> bool:
        if not self._writable():
            return False
        store_key = to_store_key(field_name)
        if store_key not in EDITABLE_FIELDS:
            raise KeyError(f"Field `{field_name}` cannot be edited directly.")
        typed_value = coerce_field_value(store_key, value)
        return self._patch(row_id, {store_key: typed_value}, "Saving the change", f"table.update_field.{store_key}") is not None

    def set_awaiting_tag(self, row_id: int, tag: str) -> bool:
        # The row picker selects one tag at a time and replaces the list.
        return self.update_field(row_id, "awaiting", (clean_text(tag) or AWAITING_NONE,))

    def delete_row(self, row_id: int, confirm: Confirm) -> bool:
        if not self._writable():
            return False
        item = self.state.find_item(row_id)
        if item is None or not confirm(delete_item_prompt(item)):
            return False
        try:
            self.store.delete_item(row_id)
        except Exception as exc:
            self._fail("table.delete_row", "Deleting the row", exc)
            return False
        self._release_items([item])
        self.state.remove_item(row_id)
        self._changed()
        if self.editor.row_id == row_id:
            self.editor.cancel()
        return True

    # Attachments

    def upload_attachment(self, row_id: int, field_name: str, name: str, data: bytes, mime_type: str | None = None) -> bool:
        if not self._writable():
            return False
        if field_name not in ATTACHMENT_FIELD_NAMES:
            raise KeyError(field_name)
        item = self.state.find_item(row_id)
        if item is None:
            return False

        previous = item.attachment(field_name)
        staged = self.resolver.stage(name, data, mime_type)
        self.state.replace_item(item.with_changes(**{field_name: staged}))
        self._changed()
        self.resolver.release(previous)

        try:
            stored_value = self.resolver.storable_value(name, data, mime_type)
            self.store.update_item(row_id, {field_name: stored_value})
        except Exception as exc:
            # The staged preview stays; the store keeps its previous value.
            self._fail(f"table.upload_attachment.{field_name}", "Saving the file", exc)
            return False

        persisted = self.resolver.finalize(staged, stored_value)
        current = self.state.find_item(row_id)
        if current is not None and isinstance(current.attachment(field_name), LocalPending):
            self.state.replace_item(current.with_changes(**{field_name: persisted}))
            self._changed()
        self.notify("success", ATTACHMENT_SAVED_NOTICE)
        return True

    def delete_attachment(self, row_id: int, field_name: str, confirm: Confirm) -> bool:
        if not self._writable():
            return False
        if field_name not in ATTACHMENT_FIELD_NAMES:
            raise KeyError(field_name)
        item = self.state.find_item(row_id)
        if item is None or not confirm(delete_attachment_prompt(field_name)):
            return False
        previous = item.attachment(field_name)
        if self._patch(row_id, {field_name: ABSENT}, "Deleting the file", f"table.delete_attachment.{field_name}") is None:
            return False
        self.resolver.release(previous)
        self.resolver.delete_remote(previous)
        return True

    # Import

    def import_rows(self, rows: list[Mapping[str, Any]], mode: ImportMode | str = ImportMode.ADD) -> ImportResult:
        import_mode = ImportMode(mode)
        result = ImportResult(mode=import_mode, total=len(rows))
        if not self._writable():
            result.skipped = True
            return result
        if not self.state.selected_container:
            self.notify("warning", "Select a container first.")
            result.skipped = True
            return result

        if import_mode == ImportMode.REPLACE:
            for existing in list(self.state.items):
                try:
                    self.store.delete_item(existing.id)
                except Exception as exc:
                    result.failed = True
                    self._fail("table.import_rows.delete", "Clearing existing rows", exc)
                    return result
                self._release_items([existing])
                self.state.remove_item(existing.id)
                self._changed()
                result.deleted += 1
            self.editor.cancel()

        for row in rows:
            values = new_item_fields(self.state.selected_container)
            values.update({to_store_key(key): value for key, value in row.items() if to_store_key(key) in EDITABLE_FIELDS})
            try:
                created = self._create_row(values)
            except Exception as exc:
                result.failed = True
                log_runtime_error("table.import_rows.create", exc)
                break
            self.state.items = [*self.state.items, created]
            self._changed()
            result.created += 1

        level = "error" if result.failed else "success"
        self.notify(level, result.summary_text())
        append_runtime_log(
            "WARN" if result.failed else "INFO",
            "table.import_rows",
            f"{import_mode.value} into `{self.state.selected_container}`: {result.summary_text()}",
        )
        return result
