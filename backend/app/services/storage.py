import copy
import csv
import io
import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


logger = logging.getLogger(__name__)

COLLECTION_STATUSES = ("collected", "in_progress", "published", "archived")


class StorageError(Exception):
    pass


class AlreadyCollectedError(Exception):
    pass


class ItemNotFoundError(Exception):
    pass


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class JsonDocumentStore:
    """
    A whole JSON document on disk. Reads never raise: a missing or corrupt
    file yields a fresh copy of the default. Writes raise StorageError.
    """

    def __init__(self, path: Path | str, default: Any):
        self.path = Path(path)
        self.default = default

    def get(self) -> Any:
        if not self.path.exists():
            return copy.deepcopy(self.default)
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Could not read %s: %s", self.path, exc)
            return copy.deepcopy(self.default)
        if not isinstance(raw, type(self.default)):
            logger.error("Unexpected document type in %s, using default", self.path)
            return copy.deepcopy(self.default)
        return raw

    def set(self, document: Any) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(
                json.dumps(document, ensure_ascii=False, indent=2),
                encoding="utf-8",
            )
            tmp_path.replace(self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Could not write %s: %s", self.path, exc)
            raise StorageError(f"Could not write {self.path.name}: {exc}") from exc


class CollectionStore:
    def __init__(self, store: JsonDocumentStore):
        self.store = store
        self._lock = threading.Lock()

    def list_items(self) -> list[dict[str, Any]]:
        return [item for item in self.store.get() if isinstance(item, dict)]

    def add(self, item: dict[str, Any]) -> dict[str, Any]:
        item_id = item.get("id")
        if not item_id:
            raise ValueError("Item id is required.")

        with self._lock:
            items = self.list_items()
            if any(existing.get("id") == item_id for existing in items):
                raise AlreadyCollectedError("Item is already collected.")

            record = {
                **item,
                "collected": True,
                "collectedAt": utc_now_iso(),
                "status": "collected",
                "notes": "",
            }
            items.append(record)
            self.store.set(items)
        return {"item": record, "total": len(items)}

    def remove(self, item_id: str) -> dict[str, Any]:
        with self._lock:
            items = self.list_items()
            for index, existing in enumerate(items):
                if existing.get("id") == item_id:
                    removed = items.pop(index)
                    self.store.set(items)
                    return removed
        raise ItemNotFoundError("Item not found.")

    def update_status(self, item_id: str, status: str, notes: str | None = "") -> dict[str, Any]:
        if status not in COLLECTION_STATUSES:
            raise ValueError(f"status must be one of: {', '.join(COLLECTION_STATUSES)}")

        with self._lock:
            items = self.list_items()
            for existing in items:
                if existing.get("id") == item_id:
                    existing["status"] = status
                    existing["notes"] = notes or ""
                    existing["updatedAt"] = utc_now_iso()
                    self.store.set(items)
                    return existing
        raise ItemNotFoundError("Item not found.")

    def stats(self, items: list[dict[str, Any]] | None = None) -> dict[str, Any]:
        if items is None:
            items = self.list_items()

        def count_by(field: str) -> dict[str, int]:
            counts: dict[str, int] = {}
            for item in items:
                value = item.get(field)
                if value:
                    counts[value] = counts.get(value, 0) + 1
            return counts

        return {
            "total": len(items),
            "categories": count_by("category"),
            "statuses": count_by("status"),
            "platforms": count_by("platform"),
            "countries": count_by("country"),
        }

    def export_csv(self) -> str:
        items = self.list_items()
        headers: list[str] = []
        for item in items:
            for key in item:
                if key not in headers:
                    headers.append(key)

        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=headers, quoting=csv.QUOTE_ALL, extrasaction="ignore")
        if headers:
            writer.writeheader()
        for item in items:
            writer.writerow({key: "" if item.get(key) is None else item.get(key) for key in headers})
        return buffer.getvalue()
