import copy
from collections.abc import Callable, MutableMapping
from typing import Any
from uuid import uuid4

Row = dict[str, Any]
RowFilter = Callable[[Row], bool]


class InMemoryCollectionDatabase:
    """
    Simple in-memory stand-in for the hosted data service.

    Rows live in named collections keyed by their ``id``. Every call hands
    back copies, so a caller mutating a returned row never changes what is
    stored until it writes it back.
    """

    def __init__(self, id_factory: Callable[[], str] | None = None) -> None:
        self._collections: MutableMapping[str, dict[str, Row]] = {}
        self._id_factory = id_factory or (lambda: str(uuid4()))

    def _collection(self, name: str) -> dict[str, Row]:
        return self._collections.setdefault(name, {})

    def insert(self, collection: str, row: Row) -> Row:
        stored = copy.deepcopy(row)
        stored["id"] = stored.get("id") or self._id_factory()
        self._collection(collection)[stored["id"]] = stored
        return copy.deepcopy(stored)

    def update(self, collection: str, row_id: str, changes: Row) -> Row | None:
        rows = self._collection(collection)
        current = rows.get(row_id)
        if current is None:
            return None
        # build the new row first so a bad change never leaves half a write
        updated = {**current, **copy.deepcopy(changes), "id": row_id}
        rows[row_id] = updated
        return copy.deepcopy(updated)

    def get(self, collection: str, row_id: str) -> Row | None:
        row = self._collection(collection).get(row_id)
        return copy.deepcopy(row) if row is not None else None

    def delete(self, collection: str, row_id: str) -> bool:
        return self._collection(collection).pop(row_id, None) is not None

    def select(self, collection: str, where: RowFilter | None = None) -> list[Row]:
        return [
            copy.deepcopy(row)
            for row in self._collection(collection).values()
            if where is None or where(row)
        ]
