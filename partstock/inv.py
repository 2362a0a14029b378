from __future__ import annotations

import logging
import re
import sqlite3

from partstock.errors import (
    DuplicateMpnError,
    DuplicateNameError,
    DuplicateStockError,
    ForeignKeyViolationError,
    InventoryError,
    NegativeQuantityError,
    NotFoundError,
    ReferentialConflictError,
)

log = logging.getLogger(__name__)


# ---------------------------
# Schema (idempotent)
# ---------------------------
DDL = r"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS categories (
  id    INTEGER PRIMARY KEY AUTOINCREMENT,
  name  TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS footprints (
  id    INTEGER PRIMARY KEY AUTOINCREMENT,
  name  TEXT NOT NULL UNIQUE
);

CREATE TABLE IF NOT EXISTS parts (
  id            INTEGER PRIMARY KEY AUTOINCREMENT,
  category_id   INTEGER NOT NULL REFERENCES categories(id),
  footprint_id  INTEGER REFERENCES footprints(id),
  mpn           TEXT UNIQUE,
  value         REAL,
  volt_rating   REAL,
  watt_rating   REAL,
  amp_rating    REAL,
  percent_tol   REAL,
  stats         TEXT,
  comments      TEXT,
  created_at    TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f','now'))
);
CREATE INDEX IF NOT EXISTS idx_parts_category_id  ON parts(category_id);
CREATE INDEX IF NOT EXISTS idx_parts_footprint_id ON parts(footprint_id);

CREATE TABLE IF NOT EXISTS locations (
  id           INTEGER PRIMARY KEY AUTOINCREMENT,
  name         TEXT NOT NULL UNIQUE,
  description  TEXT
);

CREATE TABLE IF NOT EXISTS stock (
  id           INTEGER PRIMARY KEY AUTOINCREMENT,
  part_id      INTEGER NOT NULL REFERENCES parts(id) ON DELETE CASCADE,
  location_id  INTEGER REFERENCES locations(id) ON DELETE RESTRICT,
  quantity     INTEGER NOT NULL DEFAULT 0 CONSTRAINT ck_stock_quantity CHECK (quantity >= 0),
  updated_at   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%d %H:%M:%f','now')),
  staged       INTEGER CONSTRAINT ck_stock_staged CHECK (staged >= 0),
  CONSTRAINT ck_int_stock_quantity CHECK (typeof(quantity) = 'integer'),
  CONSTRAINT ck_int_stock_staged CHECK (staged IS NULL OR typeof(staged) = 'integer'),
  CONSTRAINT uq_stock_part_location UNIQUE (part_id, location_id)
);
CREATE INDEX IF NOT EXISTS idx_stock_part_id     ON stock(part_id);
CREATE INDEX IF NOT EXISTS idx_stock_location_id ON stock(location_id);
-- UNIQUE(part_id, location_id) lets NULL locations repeat
CREATE UNIQUE INDEX IF NOT EXISTS uq_stock_part_unlocated
  ON stock(part_id) WHERE location_id IS NULL;

CREATE TRIGGER IF NOT EXISTS trg_stock_updated_at
AFTER UPDATE OF part_id, location_id, quantity, staged ON stock
FOR EACH ROW
BEGIN
  UPDATE stock
  SET updated_at = strftime('%Y-%m-%d %H:%M:%f','now')
  WHERE id = NEW.id;
END;

CREATE TRIGGER IF NOT EXISTS trg_parts_created_at_immutable
BEFORE UPDATE OF created_at ON parts
FOR EACH ROW
WHEN NEW.created_at IS NOT OLD.created_at
BEGIN
  SELECT RAISE(ABORT, 'parts.created_at is immutable');
END;

CREATE VIEW IF NOT EXISTS inventory AS
SELECT
  p.id,
  p.mpn,
  c.name AS category,
  f.name AS footprint,
  p.value,
  l.name AS location,
  s.quantity,
  s.staged,
  p.comments
FROM parts p
LEFT JOIN stock s      ON p.id = s.part_id
LEFT JOIN locations l  ON s.location_id = l.id
LEFT JOIN categories c ON p.category_id = c.id
LEFT JOIN footprints f ON p.footprint_id = f.id;
"""

PART_FIELDS = (
    "category_id",
    "footprint_id",
    "mpn",
    "value",
    "volt_rating",
    "watt_rating",
    "amp_rating",
    "percent_tol",
    "stats",
    "comments",
)

INVENTORY_COLUMNS = "id, mpn, category, footprint, value, location, quantity, staged, comments"


def init_db(conn: sqlite3.Connection):
    conn.executescript(DDL)


# ---------------------------
# Helpers
# ---------------------------
def clean_text(s) -> str:
    if s is None:
        return ""
    return re.sub(r"\s+", " ", str(s)).strip()


def _strip(s) -> str:
    # names and mpns are compared exactly; only the ends are trimmed
    if s is None:
        return ""
    return str(s).strip()


def _clean_name(name, what: str) -> str:
    name = _strip(name)
    if not name:
        raise ValueError(f"{what} name must not be empty")
    return name


def _check_count(value, what: str):
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{what} must be an integer, got {value!r}")


def _tx_begin(conn, tx_name: str = "inv_tx"):
    conn.execute(f"SAVEPOINT {tx_name};")


def _tx_commit(conn, tx_name: str = "inv_tx"):
    conn.execute(f"RELEASE SAVEPOINT {tx_name};")


def _tx_rollback(conn, tx_name: str = "inv_tx"):
    conn.execute(f"ROLLBACK TO SAVEPOINT {tx_name};")
    conn.execute(f"RELEASE SAVEPOINT {tx_name};")


def integrity_error(exc: sqlite3.IntegrityError, *, fk_error=ForeignKeyViolationError) -> InventoryError:
    """Map a raw constraint failure onto the matching inventory error kind.

    SQLite reports foreign key failures without naming the constraint, so the
    caller says what a FK failure means for its statement (a dangling
    reference on insert, a blocked delete, ...).
    """
    msg = str(exc)
    if "ck_stock_" in msg:
        return NegativeQuantityError(msg)
    if "UNIQUE constraint failed: parts.mpn" in msg:
        return DuplicateMpnError(msg)
    if "UNIQUE constraint failed: stock." in msg:
        return DuplicateStockError(msg)
    if "UNIQUE constraint failed" in msg:
        return DuplicateNameError(msg)
    if "FOREIGN KEY constraint failed" in msg:
        return fk_error(msg)
    return InventoryError(msg)


def _get_row(conn, table: str, row_id: int, what: str) -> sqlite3.Row:
    row = conn.execute(f"SELECT * FROM {table} WHERE id=?", (row_id,)).fetchone()
    if row is None:
        raise NotFoundError(f"{what} does not exist: id={row_id}")
    return row


def _get_id_by_name(conn, table: str, name: str, what: str) -> int:
    row = conn.execute(f"SELECT id FROM {table} WHERE name=?", (_strip(name),)).fetchone()
    if row is None:
        raise NotFoundError(f"{what} does not exist: {name}")
    return int(row["id"])


def _create_named(conn, table: str, name: str, what: str, **extra) -> int:
    name = _clean_name(name, what)
    if conn.execute(f"SELECT 1 FROM {table} WHERE name=?", (name,)).fetchone() is not None:
        raise DuplicateNameError(f"{what} already exists: {name}")
    columns = ["name", *extra]
    placeholders = ",".join("?" for _ in columns)
    try:
        cur = conn.execute(
            f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})",
            (name, *extra.values()),
        )
    except sqlite3.IntegrityError as exc:
        raise integrity_error(exc) from exc
    row_id = int(cur.lastrowid)
    log.info("created %s id=%s name=%r", what, row_id, name)
    return row_id


# ---------------------------
# Catalog: categories / footprints
# ---------------------------
def _delete_lookup(conn, table: str, fk_column: str, row_id: int, what: str):
    _get_row(conn, table, row_id, what)
    n_parts = conn.execute(f"SELECT COUNT(*) FROM parts WHERE {fk_column}=?", (row_id,)).fetchone()[0]
    if n_parts:
        log.warning("refused to delete %s id=%s: referenced by %s part(s)", what, row_id, n_parts)
        raise ReferentialConflictError(f"{what} id={row_id} is still used by {n_parts} part(s)")
    try:
        conn.execute(f"DELETE FROM {table} WHERE id=?", (row_id,))
    except sqlite3.IntegrityError as exc:
        raise integrity_error(exc, fk_error=ReferentialConflictError) from exc
    log.info("deleted %s id=%s", what, row_id)


def create_category(conn, name: str) -> int:
    return _create_named(conn, "categories", name, "category")


def get_category(conn, category_id: int) -> sqlite3.Row:
    return _get_row(conn, "categories", category_id, "category")


def get_category_id(conn, name: str) -> int:
    return _get_id_by_name(conn, "categories", name, "category")


def list_categories(conn) -> list[sqlite3.Row]:
    return conn.execute("SELECT id, name FROM categories ORDER BY name").fetchall()


def delete_category(conn, category_id: int):
    _delete_lookup(conn, "categories", "category_id", category_id, "category")


def create_footprint(conn, name: str) -> int:
    return _create_named(conn, "footprints", name, "footprint")


def get_footprint(conn, footprint_id: int) -> sqlite3.Row:
    return _get_row(conn, "footprints", footprint_id, "footprint")


def get_footprint_id(conn, name: str) -> int:
    return _get_id_by_name(conn, "footprints", name, "footprint")


def list_footprints(conn) -> list[sqlite3.Row]:
    return conn.execute("SELECT id, name FROM footprints ORDER BY name").fetchall()


def delete_footprint(conn, footprint_id: int):
    _delete_lookup(conn, "footprints", "footprint_id", footprint_id, "footprint")


# ---------------------------
# Parts
# ---------------------------
def _assert_part_refs(conn, category_id, footprint_id):
    if category_id is None or conn.execute("SELECT 1 FROM categories WHERE id=?", (category_id,)).fetchone() is None:
        raise ForeignKeyViolationError(f"category does not exist: id={category_id}")
    if footprint_id is not None and conn.execute("SELECT 1 FROM footprints WHERE id=?", (footprint_id,)).fetchone() is None:
        raise ForeignKeyViolationError(f"footprint does not exist: id={footprint_id}")


def _assert_mpn_free(conn, mpn: str, part_id: int | None = None):
    row = conn.execute("SELECT id FROM parts WHERE mpn=?", (mpn,)).fetchone()
    if row is not None and int(row["id"]) != part_id:
        raise DuplicateMpnError(f"mpn already in use: {mpn} (part id={row['id']})")


def create_part(
    conn,
    category_id: int,
    footprint_id: int | None = None,
    mpn: str | None = None,
    value: float | None = None,
    volt_rating: float | None = None,
    watt_rating: float | None = None,
    amp_rating: float | None = None,
    percent_tol: float | None = None,
    stats: str | None = None,
    comments: str | None = None,
) -> int:
    mpn = _strip(mpn) or None
    _assert_part_refs(conn, category_id, footprint_id)
    if mpn is not None:
        _assert_mpn_free(conn, mpn)
    try:
        cur = conn.execute(
            """
            INSERT INTO parts (category_id, footprint_id, mpn, value, volt_rating, watt_rating,
                               amp_rating, percent_tol, stats, comments)
            VALUES (?,?,?,?,?,?,?,?,?,?)
            """,
            (category_id, footprint_id, mpn, value, volt_rating, watt_rating, amp_rating, percent_tol, stats, comments),
        )
    except sqlite3.IntegrityError as exc:
        raise integrity_error(exc) from exc
    part_id = int(cur.lastrowid)
    log.info("created part id=%s mpn=%s category_id=%s", part_id, mpn, category_id)
    return part_id


def get_part(conn, part_id: int) -> sqlite3.Row:
    return _get_row(conn, "parts", part_id, "part")


def get_part_id_by_mpn(conn, mpn: str) -> int:
    r = conn.execute("SELECT id FROM parts WHERE mpn=?", (_strip(mpn),)).fetchone()
    if not r:
        raise NotFoundError(f"part does not exist: mpn={mpn}")
    return int(r["id"])


def update_part(conn, part_id: int, **fields):
    unknown = set(fields) - set(PART_FIELDS)
    if unknown:
        raise ValueError(f"cannot update part field(s): {', '.join(sorted(unknown))}")
    current = get_part(conn, part_id)
    if not fields:
        return
    if "mpn" in fields:
        fields["mpn"] = _strip(fields["mpn"]) or None
        if fields["mpn"] is not None:
            _assert_mpn_free(conn, fields["mpn"], part_id)
    if "category_id" in fields or "footprint_id" in fields:
        _assert_part_refs(
            conn,
            fields.get("category_id", current["category_id"]),
            fields.get("footprint_id", current["footprint_id"]),
        )
    assignments = ", ".join(f"{name}=?" for name in fields)
    try:
        conn.execute(f"UPDATE parts SET {assignments} WHERE id=?", (*fields.values(), part_id))
    except sqlite3.IntegrityError as exc:
        raise integrity_error(exc) from exc
    log.info("updated part id=%s fields=%s", part_id, sorted(fields))


def delete_part(conn, part_id: int) -> int:
    """Delete a part together with all of its stock rows; returns the number of stock rows removed."""
    get_part(conn, part_id)
    _tx_begin(conn)
    try:
        removed = conn.execute("DELETE FROM stock WHERE part_id=?", (part_id,)).rowcount
        conn.execute("DELETE FROM parts WHERE id=?", (part_id,))
        _tx_commit(conn)
    except Exception:
        _tx_rollback(conn)
        raise
    log.info("deleted part id=%s with %s stock row(s)", part_id, removed)
    return removed


# ---------------------------
# Locations
# ---------------------------
def create_location(conn, name: str, description: str | None = None) -> int:
    return _create_named(conn, "locations", name, "location", description=description)


def get_location(conn, location_id: int) -> sqlite3.Row:
    return _get_row(conn, "locations", location_id, "location")


def get_location_id(conn, name: str) -> int:
    return _get_id_by_name(conn, "locations", name, "location")


def list_locations(conn) -> list[sqlite3.Row]:
    return conn.execute("SELECT id, name, description FROM locations ORDER BY name").fetchall()


def delete_location(conn, location_id: int):
    get_location(conn, location_id)
    n_stock = conn.execute("SELECT COUNT(*) FROM stock WHERE location_id=?", (location_id,)).fetchone()[0]
    if n_stock:
        log.warning("refused to delete location id=%s: %s stock row(s) reference it", location_id, n_stock)
        raise ReferentialConflictError(f"location id={location_id} still holds {n_stock} stock row(s)")
    try:
        conn.execute("DELETE FROM locations WHERE id=?", (location_id,))
    except sqlite3.IntegrityError as exc:
        raise integrity_error(exc, fk_error=ReferentialConflictError) from exc
    log.info("deleted location id=%s", location_id)


# ---------------------------
# Stock ledger
# ---------------------------
def _stock_row(conn, part_id: int, location_id: int | None) -> sqlite3.Row | None:
    # IS matches the NULL (unlocated) slot as well
    return conn.execute(
        "SELECT id, part_id, location_id, quantity, staged, updated_at FROM stock WHERE part_id=? AND location_id IS ?",
        (part_id, location_id),
    ).fetchone()


def _assert_stock_refs(conn, part_id: int, location_id: int | None):
    get_part(conn, part_id)
    if location_id is not None:
        get_location(conn, location_id)


def _apply_delta(conn, part_id: int, location_id: int | None, qty_delta: int) -> int:
    row = _stock_row(conn, part_id, location_id)
    if row is None:
        if qty_delta < 0:
            raise NotFoundError(f"no stock row: part_id={part_id} location_id={location_id}")
        try:
            conn.execute(
                "INSERT INTO stock (part_id, location_id, quantity) VALUES (?,?,?)",
                (part_id, location_id, qty_delta),
            )
            return qty_delta
        except sqlite3.IntegrityError as exc:
            if "UNIQUE constraint failed" not in str(exc):
                raise integrity_error(exc, fk_error=NotFoundError) from exc
            # a concurrent writer created the row first; apply the delta to it
            row = _stock_row(conn, part_id, location_id)
            if row is None:
                raise integrity_error(exc) from exc
    current = int(row["quantity"])
    nxt = current + qty_delta
    if nxt < 0:
        raise NegativeQuantityError(
            f"insufficient stock: part_id={part_id} location_id={location_id} stock={current} delta={qty_delta}"
        )
    try:
        conn.execute("UPDATE stock SET quantity=quantity+? WHERE id=?", (qty_delta, int(row["id"])))
    except sqlite3.IntegrityError as exc:
        raise integrity_error(exc) from exc
    return nxt


def get_stock(conn, part_id: int, location_id: int | None) -> sqlite3.Row:
    row = _stock_row(conn, part_id, location_id)
    if row is None:
        raise NotFoundError(f"no stock row: part_id={part_id} location_id={location_id}")
    return row


def list_stock(conn, part_id: int) -> list[sqlite3.Row]:
    get_part(conn, part_id)
    return conn.execute(
        """
        SELECT s.id, s.part_id, s.location_id, s.quantity, s.staged, s.updated_at
        FROM stock s
        LEFT JOIN locations l ON l.id = s.location_id
        WHERE s.part_id=?
        ORDER BY l.name
        """,
        (part_id,),
    ).fetchall()


def total_quantity(conn, part_id: int) -> int:
    get_part(conn, part_id)
    return int(conn.execute("SELECT COALESCE(SUM(quantity), 0) FROM stock WHERE part_id=?", (part_id,)).fetchone()[0])


def create_stock(conn, part_id: int, location_id: int | None, quantity: int = 0, staged: int | None = None) -> int:
    _check_count(quantity, "quantity")
    if staged is not None:
        _check_count(staged, "staged")
    if quantity < 0:
        raise NegativeQuantityError(f"initial quantity must be >= 0, got {quantity}")
    if staged is not None and staged < 0:
        raise NegativeQuantityError(f"staged must be >= 0, got {staged}")
    _assert_stock_refs(conn, part_id, location_id)
    if _stock_row(conn, part_id, location_id) is not None:
        raise DuplicateStockError(f"stock row already exists: part_id={part_id} location_id={location_id}")
    try:
        cur = conn.execute(
            "INSERT INTO stock (part_id, location_id, quantity, staged) VALUES (?,?,?,?)",
            (part_id, location_id, quantity, staged),
        )
    except sqlite3.IntegrityError as exc:
        raise integrity_error(exc, fk_error=NotFoundError) from exc
    stock_id = int(cur.lastrowid)
    log.info("created stock id=%s part_id=%s location_id=%s qty=%s", stock_id, part_id, location_id, quantity)
    return stock_id


def upsert_stock(conn, part_id: int, location_id: int | None, quantity_delta: int) -> int:
    """Apply ``quantity_delta`` to the (part, location) slot and return the new quantity.

    A missing slot is created with the delta as its initial quantity, which
    therefore has to be non-negative; consuming from a slot that was never
    stocked is reported as NotFoundError.
    """
    _check_count(quantity_delta, "quantity_delta")
    _assert_stock_refs(conn, part_id, location_id)
    _tx_begin(conn)
    try:
        qty = _apply_delta(conn, part_id, location_id, quantity_delta)
        _tx_commit(conn)
    except Exception:
        _tx_rollback(conn)
        raise
    log.info("stock part_id=%s location_id=%s delta=%+d -> %s", part_id, location_id, quantity_delta, qty)
    return qty


def set_staged(conn, part_id: int, location_id: int | None, staged: int | None):
    if staged is not None:
        _check_count(staged, "staged")
    row = get_stock(conn, part_id, location_id)
    if staged is not None and staged < 0:
        raise NegativeQuantityError(f"staged must be >= 0, got {staged}")
    try:
        conn.execute("UPDATE stock SET staged=? WHERE id=?", (staged, int(row["id"])))
    except sqlite3.IntegrityError as exc:
        raise integrity_error(exc) from exc
    log.info("staged part_id=%s location_id=%s -> %s", part_id, location_id, staged)


def move_stock(conn, part_id: int, from_location_id: int | None, to_location_id: int | None, amount: int) -> tuple[int, int]:
    """Move ``amount`` units between two slots of one part; returns (source qty, destination qty)."""
    _check_count(amount, "move amount")
    if amount <= 0:
        raise ValueError(f"move amount must be > 0, got {amount}")
    if from_location_id == to_location_id:
        raise ValueError("source and destination location must differ")
    _assert_stock_refs(conn, part_id, from_location_id)
    if to_location_id is not None:
        get_location(conn, to_location_id)
    src = get_stock(conn, part_id, from_location_id)
    if int(src["quantity"]) < amount:
        raise NegativeQuantityError(
            f"move failed: source stock too low (stock={int(src['quantity'])} < move={amount})"
        )
    _tx_begin(conn)
    try:
        src_qty = _apply_delta(conn, part_id, from_location_id, -amount)
        dst_qty = _apply_delta(conn, part_id, to_location_id, amount)
        _tx_commit(conn)
    except Exception:
        _tx_rollback(conn)
        raise
    log.info(
        "moved %s of part_id=%s from location_id=%s to location_id=%s",
        amount,
        part_id,
        from_location_id,
        to_location_id,
    )
    return src_qty, dst_qty


# ---------------------------
# Inventory view
# ---------------------------
def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def list_inventory(conn, part_id: int | None = None) -> list[sqlite3.Row]:
    if part_id is None:
        return conn.execute(f"SELECT {INVENTORY_COLUMNS} FROM inventory ORDER BY id, location").fetchall()
    return conn.execute(
        f"SELECT {INVENTORY_COLUMNS} FROM inventory WHERE id=? ORDER BY location",
        (part_id,),
    ).fetchall()


def search_inventory(
    conn,
    category: str = "",
    footprint: str = "",
    min_value: float | None = None,
    max_value: float | None = None,
    text: str = "",
    location: str = "",
) -> list[sqlite3.Row]:
    where, params = [], []
    if _strip(category):
        where.append("category = ?")
        params.append(_strip(category))
    if _strip(footprint):
        where.append("footprint = ?")
        params.append(_strip(footprint))
    if _strip(location):
        where.append("location = ?")
        params.append(_strip(location))
    if min_value is not None:
        where.append("value >= ?")
        params.append(min_value)
    if max_value is not None:
        where.append("value <= ?")
        params.append(max_value)
    if clean_text(text):
        pattern = _like_pattern(clean_text(text))
        where.append("(mpn LIKE ? ESCAPE '\\' OR comments LIKE ? ESCAPE '\\')")
        params.extend([pattern, pattern])
    sql = f"SELECT {INVENTORY_COLUMNS} FROM inventory"
    if where:
        sql += " WHERE " + " AND ".join(where)
    sql += " ORDER BY id, location"
    return conn.execute(sql, params).fetchall()
