"""Thread-safe JSON file storage for small record collections."""

import json
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

T = TypeVar("T", bound=BaseModel)


class JsonStore(Generic[T]):
    """Collection of Pydantic records persisted as one JSON document.

    The event watcher and request handlers write from different threads, so
    every read-modify-write cycle happens under a single RLock and the file
    is replaced atomically.

    Example:
        ```python
        store = JsonStore[JobAuditEvent](
            file_path=Path("data/metadata/job_events.json"),
            collection_key="events",
            model_class=JobAuditEvent,
        )
        store.create(event)
        failed = store.find(lambda e: not e.success)
        ```
    """

    def __init__(
        self,
        file_path: Path,
        collection_key: str,
        model_class: type[T],
    ) -> None:
        """Initialize the JSON store.

        Args:
            file_path: Path to the JSON file
            collection_key: Key in the JSON object holding the record list
            model_class: Pydantic model class used to load records
        """
        self.file_path = file_path
        self.collection_key = collection_key
        self.model_class = model_class
        self._lock = threading.RLock()

        if not self.file_path.exists():
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            self._write_raw({self.collection_key: []})

    def _read_raw(self) -> dict[str, Any]:
        with open(self.file_path, encoding="utf-8") as f:
            return json.load(f)

    def _write_raw(self, data: dict[str, Any]) -> None:
        temp_path = self.file_path.with_suffix(".tmp")
        with open(temp_path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        temp_path.replace(self.file_path)

    def _write_collection(self, items: list[T]) -> None:
        self._write_raw(
            {
                self.collection_key: [
                    item.model_dump(mode="json", by_alias=True) for item in items
                ]
            }
        )

    def list_all(self) -> list[T]:
        """Load every record in the collection."""
        with self._lock:
            items = self._read_raw().get(self.collection_key, [])
            return [self.model_class.model_validate(item) for item in items]

    def get_by_id(self, item_id: str) -> T | None:
        """Get a record by its ``id`` field, or None if absent."""
        with self._lock:
            for item in self.list_all():
                if getattr(item, "id", None) == item_id:
                    return item
            return None

    def create(self, item: T) -> T:
        """Append a record.

        Raises:
            ValueError: If a record with the same ID already exists
        """
        with self._lock:
            items = self.list_all()
            item_id = getattr(item, "id", None)
            if item_id and any(getattr(i, "id", None) == item_id for i in items):
                raise ValueError(f"Item with ID '{item_id}' already exists")
            items.append(item)
            self._write_collection(items)
            return item

    def update(self, item_id: str, item: T) -> T | None:
        """Replace the record with the given ID.

        Returns:
            The stored record, or None if no record has that ID
        """
        with self._lock:
            items = self.list_all()
            for i, existing in enumerate(items):
                if getattr(existing, "id", None) == item_id:
                    items[i] = item
                    self._write_collection(items)
                    return item
            return None

    def find(self, predicate: Callable[[T], bool]) -> list[T]:
        """Return the records matching ``predicate``."""
        with self._lock:
            return [item for item in self.list_all() if predicate(item)]

