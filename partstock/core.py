from __future__ import annotations

import logging
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any

from partstock import inv
from partstock.config import Settings, load_settings
from partstock.db import connect, init_db, transaction
from partstock.errors import DatabaseLockedError
from partstock.schemas import (
    Category,
    Footprint,
    InventoryQuery,
    InventoryRow,
    Location,
    Part,
    StockEntry,
)

log = logging.getLogger(__name__)


def _normalize_error(exc: Exception) -> Exception:
    if isinstance(exc, sqlite3.OperationalError):
        msg = str(exc).lower()
        if "database is locked" in msg or "database is busy" in msg:
            log.warning("lock contention: %s", exc)
            return DatabaseLockedError("database is locked by another writer, retry later")
    if isinstance(exc, sqlite3.IntegrityError):
        return inv.integrity_error(exc)
    return exc


class InventoryService:
    """Transactional entry point: one connection and at most one transaction per call."""

    def __init__(self, db_path: str | Path | None = None, *, busy_timeout: float | None = None, settings: Settings | None = None):
        settings = settings or load_settings()
        self.db_path = Path(db_path) if db_path is not None else settings.db_path
        self.busy_timeout = busy_timeout if busy_timeout is not None else settings.busy_timeout
        try:
            with closing(self._conn()) as conn:
                init_db(conn)
        except Exception as exc:
            raise _normalize_error(exc)

    def _conn(self):
        return connect(self.db_path, timeout=self.busy_timeout)

    @contextmanager
    def _writing(self):
        try:
            with closing(self._conn()) as conn:
                with transaction(conn):
                    yield conn
        except Exception as exc:
            raise _normalize_error(exc)

    @contextmanager
    def _reading(self):
        try:
            with closing(self._conn()) as conn:
                yield conn
        except Exception as exc:
            raise _normalize_error(exc)

    # categories / footprints
    def create_category(self, name: str) -> Category:
        with self._writing() as conn:
            category_id = inv.create_category(conn, name)
            return Category.model_validate(dict(inv.get_category(conn, category_id)))

    def get_category(self, category_id: int) -> Category:
        with self._reading() as conn:
            return Category.model_validate(dict(inv.get_category(conn, category_id)))

    def get_category_by_name(self, name: str) -> Category:
        with self._reading() as conn:
            category_id = inv.get_category_id(conn, name)
            return Category.model_validate(dict(inv.get_category(conn, category_id)))

    def list_categories(self) -> list[Category]:
        with self._reading() as conn:
            return [Category.model_validate(dict(r)) for r in inv.list_categories(conn)]

    def delete_category(self, category_id: int) -> None:
        with self._writing() as conn:
            inv.delete_category(conn, category_id)

    def create_footprint(self, name: str) -> Footprint:
        with self._writing() as conn:
            footprint_id = inv.create_footprint(conn, name)
            return Footprint.model_validate(dict(inv.get_footprint(conn, footprint_id)))

    def get_footprint(self, footprint_id: int) -> Footprint:
        with self._reading() as conn:
            return Footprint.model_validate(dict(inv.get_footprint(conn, footprint_id)))

    def get_footprint_by_name(self, name: str) -> Footprint:
        with self._reading() as conn:
            footprint_id = inv.get_footprint_id(conn, name)
            return Footprint.model_validate(dict(inv.get_footprint(conn, footprint_id)))

    def list_footprints(self) -> list[Footprint]:
        with self._reading() as conn:
            return [Footprint.model_validate(dict(r)) for r in inv.list_footprints(conn)]

    def delete_footprint(self, footprint_id: int) -> None:
        with self._writing() as conn:
            inv.delete_footprint(conn, footprint_id)

    # parts
    def create_part(self, category_id: int, footprint_id: int | None = None, mpn: str | None = None, **fields: Any) -> Part:
        with self._writing() as conn:
            part_id = inv.create_part(conn, category_id, footprint_id, mpn, **fields)
            return Part.model_validate(dict(inv.get_part(conn, part_id)))

    def get_part(self, part_id: int) -> Part:
        with self._reading() as conn:
            return Part.model_validate(dict(inv.get_part(conn, part_id)))

    def get_part_by_mpn(self, mpn: str) -> Part:
        with self._reading() as conn:
            part_id = inv.get_part_id_by_mpn(conn, mpn)
            return Part.model_validate(dict(inv.get_part(conn, part_id)))

    def update_part(self, part_id: int, **fields: Any) -> Part:
        with self._writing() as conn:
            inv.update_part(conn, part_id, **fields)
            return Part.model_validate(dict(inv.get_part(conn, part_id)))

    def delete_part(self, part_id: int) -> int:
        with self._writing() as conn:
            return inv.delete_part(conn, part_id)

    # locations
    def create_location(self, name: str, description: str | None = None) -> Location:
        with self._writing() as conn:
            location_id = inv.create_location(conn, name, description)
            return Location.model_validate(dict(inv.get_location(conn, location_id)))

    def get_location(self, location_id: int) -> Location:
        with self._reading() as conn:
            return Location.model_validate(dict(inv.get_location(conn, location_id)))

    def get_location_by_name(self, name: str) -> Location:
        with self._reading() as conn:
            location_id = inv.get_location_id(conn, name)
            return Location.model_validate(dict(inv.get_location(conn, location_id)))

    def list_locations(self) -> list[Location]:
        with self._reading() as conn:
            return [Location.model_validate(dict(r)) for r in inv.list_locations(conn)]

    def delete_location(self, location_id: int) -> None:
        with self._writing() as conn:
            inv.delete_location(conn, location_id)

    # stock ledger
    def create_stock(self, part_id: int, location_id: int | None, quantity: int = 0, staged: int | None = None) -> StockEntry:
        with self._writing() as conn:
            inv.create_stock(conn, part_id, location_id, quantity, staged)
            return StockEntry.model_validate(dict(inv.get_stock(conn, part_id, location_id)))

    def upsert_stock(self, part_id: int, location_id: int | None, quantity_delta: int) -> StockEntry:
        with self._writing() as conn:
            inv.upsert_stock(conn, part_id, location_id, quantity_delta)
            return StockEntry.model_validate(dict(inv.get_stock(conn, part_id, location_id)))

    def set_staged(self, part_id: int, location_id: int | None, staged: int | None) -> StockEntry:
        with self._writing() as conn:
            inv.set_staged(conn, part_id, location_id, staged)
            return StockEntry.model_validate(dict(inv.get_stock(conn, part_id, location_id)))

    def move_stock(self, part_id: int, from_location_id: int | None, to_location_id: int | None, amount: int) -> tuple[StockEntry, StockEntry]:
        with self._writing() as conn:
            inv.move_stock(conn, part_id, from_location_id, to_location_id, amount)
            src = inv.get_stock(conn, part_id, from_location_id)
            dst = inv.get_stock(conn, part_id, to_location_id)
            return StockEntry.model_validate(dict(src)), StockEntry.model_validate(dict(dst))

    def get_stock(self, part_id: int, location_id: int | None) -> StockEntry:
        with self._reading() as conn:
            return StockEntry.model_validate(dict(inv.get_stock(conn, part_id, location_id)))

    def list_stock(self, part_id: int) -> list[StockEntry]:
        with self._reading() as conn:
            return [StockEntry.model_validate(dict(r)) for r in inv.list_stock(conn, part_id)]

    def total_quantity(self, part_id: int) -> int:
        with self._reading() as conn:
            return inv.total_quantity(conn, part_id)

    # inventory view
    def list_inventory(self, part_id: int | None = None) -> list[InventoryRow]:
        with self._reading() as conn:
            return [InventoryRow.model_validate(dict(r)) for r in inv.list_inventory(conn, part_id)]

    def search_inventory(self, query: InventoryQuery | None = None, **filters: Any) -> list[InventoryRow]:
        query = query or InventoryQuery(**filters)
        with self._reading() as conn:
            rows = inv.search_inventory(conn, **query.model_dump())
            return [InventoryRow.model_validate(dict(r)) for r in rows]
