from __future__ import annotations

from typing import Any, Mapping

from cargotrol.config import AppConfig

CONTAINERS_TABLE = "containers"
CONTAINER_ITEMS_TABLE = "container_items"


class StoreError(RuntimeError):
    """A record store call failed; the original error is chained as ``__cause__``."""


class RecordStoreClient:
    """CRUD over the ``containers`` and ``container_items`` tables.

    Wraps a ``supabase`` client. Calls are neither retried nor time-limited;
    any failure surfaces as ``StoreError`` and the caller decides what to do.
    """

    def __init__(self, client: Any) -> None:
        self.client = client

    @classmethod
    def from_config(cls, config: AppConfig) -> "RecordStoreClient":
        if not config.store_configured:
            raise StoreError("Record store is not configured. Set SUPABASE_URL and SUPABASE_ANON_KEY.")
        from supabase import create_client

        try:
            client = create_client(config.supabase_url, config.supabase_key)
        except Exception as exc:
            raise StoreError("Connecting to the record store failed.") from exc
        return cls(client)

    def _execute(self, action: str, query: Any) -> list[dict[str, Any]]:
        try:
            response = query.execute()
        except Exception as exc:
            raise StoreError(f"{action} failed.") from exc
        data = getattr(response, "data", None)
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        return list(data)

    def list_containers(self) -> list[dict[str, Any]]:
        query = self.client.table(CONTAINERS_TABLE).select("*").order("name")
        return self._execute("Loading containers", query)

    def create_container(self, name: str) -> dict[str, Any]:
        query = self.client.table(CONTAINERS_TABLE).insert({"name": name})
        rows = self._execute(f"Creating container `{name}`", query)
        if not rows:
            raise StoreError(f"Creating container `{name}` failed: the store returned no row.")
        return rows[0]

    def delete_container(self, name: str) -> None:
        # container_items rows go with it (ON DELETE CASCADE).
        query = self.client.table(CONTAINERS_TABLE).delete().eq("name", name)
        self._execute(f"Deleting container `{name}`", query)

    def list_items(self, container_name: str) -> list[dict[str, Any]]:
        query = (
            self.client.table(CONTAINER_ITEMS_TABLE)
            .select("*")
            .eq("container_name", container_name)
            .order("id")
        )
        return self._execute(f"Loading items for `{container_name}`", query)

    def create_item(self, row: Mapping[str, Any]) -> dict[str, Any]:
        query = self.client.table(CONTAINER_ITEMS_TABLE).insert(dict(row))
        rows = self._execute("Creating item", query)
        if not rows:
            raise StoreError("Creating item failed: the store returned no row.")
        return rows[0]

    def update_item(self, item_id: int, patch: Mapping[str, Any]) -> dict[str, Any]:
        query = self.client.table(CONTAINER_ITEMS_TABLE).update(dict(patch)).eq("id", item_id)
        rows = self._execute(f"Updating item {item_id}", query)
        if not rows:
            raise StoreError(f"Updating item {item_id} failed: no such row.")
        return rows[0]

    def delete_item(self, item_id: int) -> None:
        query = self.client.table(CONTAINER_ITEMS_TABLE).delete().eq("id", item_id)
        self._execute(f"Deleting item {item_id}", query)
