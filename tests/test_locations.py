import sqlite3

import pytest

from partstock import inv
from partstock.errors import DuplicateNameError, NotFoundError, ReferentialConflictError


def test_create_location_with_description(conn):
    location_id = inv.create_location(conn, "Shelf A", "top shelf")
    row = inv.get_location(conn, location_id)
    assert row["name"] == "Shelf A"
    assert row["description"] == "top shelf"
    assert inv.get_location_id(conn, "Shelf A") == location_id


def test_duplicate_location_name(conn):
    inv.create_location(conn, "Shelf A")
    with pytest.raises(DuplicateNameError):
        inv.create_location(conn, "Shelf A", "again")


def test_delete_location_restricted_by_stock(conn, refs):
    inv.upsert_stock(conn, refs["part"], refs["l1"], 50)
    with pytest.raises(ReferentialConflictError):
        inv.delete_location(conn, refs["l1"])
    assert inv.get_location(conn, refs["l1"])["name"] == "L1"
    assert inv.get_stock(conn, refs["part"], refs["l1"])["quantity"] == 50


def test_store_enforces_restrict_delete(conn, refs):
    inv.upsert_stock(conn, refs["part"], refs["l1"], 1)
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("DELETE FROM locations WHERE id=?", (refs["l1"],))


def test_delete_location_after_stock_is_gone(conn, refs):
    inv.upsert_stock(conn, refs["part"], refs["l1"], 1)
    inv.delete_part(conn, refs["part"])
    inv.delete_location(conn, refs["l1"])
    assert [r["name"] for r in inv.list_locations(conn)] == ["L2"]


def test_delete_missing_location(conn):
    with pytest.raises(NotFoundError):
        inv.delete_location(conn, 3)


def test_inner_whitespace_makes_a_different_name(conn):
    spaced = inv.create_location(conn, "Shelf  A")
    single = inv.create_location(conn, "Shelf A")
    assert spaced != single
    assert inv.get_location_id(conn, "Shelf  A") == spaced
    assert inv.get_location_id(conn, " Shelf A ") == single
