import sqlite3

import pytest

from partstock import inv
from partstock.errors import DuplicateMpnError, ForeignKeyViolationError, NotFoundError


def test_create_part_stamps_created_at(conn, refs):
    part = inv.get_part(conn, refs["part"])
    assert part["mpn"] == "R-100-1K"
    assert part["value"] == 1000.0
    assert part["created_at"]


def test_create_part_requires_existing_category(conn):
    with pytest.raises(ForeignKeyViolationError):
        inv.create_part(conn, 42, mpn="X-1")


def test_create_part_requires_existing_footprint_when_given(conn, refs):
    with pytest.raises(ForeignKeyViolationError):
        inv.create_part(conn, refs["category"], 999, mpn="X-1")
    assert inv.create_part(conn, refs["category"], None, mpn="X-1")


def test_duplicate_mpn_leaves_original_untouched(conn, refs):
    with pytest.raises(DuplicateMpnError):
        inv.create_part(conn, refs["category"], mpn="R-100-1K", comments="impostor")
    assert inv.get_part(conn, refs["part"])["comments"] == "1k thin film"
    assert conn.execute("SELECT COUNT(*) FROM parts").fetchone()[0] == 1


def test_parts_without_mpn_do_not_collide(conn, refs):
    first = inv.create_part(conn, refs["category"])
    second = inv.create_part(conn, refs["category"], mpn="  ")
    assert inv.get_part(conn, first)["mpn"] is None
    assert inv.get_part(conn, second)["mpn"] is None


def test_get_part_id_by_mpn(conn, refs):
    assert inv.get_part_id_by_mpn(conn, "R-100-1K") == refs["part"]
    with pytest.raises(NotFoundError):
        inv.get_part_id_by_mpn(conn, "nope")


def test_update_part_keeps_created_at(conn, refs):
    before = inv.get_part(conn, refs["part"])["created_at"]
    inv.update_part(conn, refs["part"], comments="re-labelled", watt_rating=0.1)
    part = inv.get_part(conn, refs["part"])
    assert part["comments"] == "re-labelled"
    assert part["watt_rating"] == 0.1
    assert part["created_at"] == before


def test_update_part_rejects_taken_mpn(conn, refs):
    other = inv.create_part(conn, refs["category"], mpn="R-100-10K")
    with pytest.raises(DuplicateMpnError):
        inv.update_part(conn, other, mpn="R-100-1K")
    inv.update_part(conn, refs["part"], mpn="R-100-1K")


def test_update_part_rejects_unknown_fields(conn, refs):
    with pytest.raises(ValueError):
        inv.update_part(conn, refs["part"], created_at="2000-01-01")


def test_created_at_is_immutable_in_store(conn, refs):
    with pytest.raises(sqlite3.IntegrityError):
        conn.execute("UPDATE parts SET created_at='2000-01-01 00:00:00.000' WHERE id=?", (refs["part"],))


def test_delete_part_cascades_to_stock(conn, refs):
    inv.upsert_stock(conn, refs["part"], refs["l1"], 10)
    inv.upsert_stock(conn, refs["part"], refs["l2"], 5)
    assert inv.delete_part(conn, refs["part"]) == 2
    assert conn.execute("SELECT COUNT(*) FROM stock").fetchone()[0] == 0
    assert inv.list_inventory(conn, refs["part"]) == []
    with pytest.raises(NotFoundError):
        inv.get_part(conn, refs["part"])


def test_delete_missing_part(conn):
    with pytest.raises(NotFoundError):
        inv.delete_part(conn, 7)


def test_mpn_keeps_inner_whitespace(conn, refs):
    part_id = inv.create_part(conn, refs["category"], mpn="R-100 1K")
    assert inv.get_part(conn, part_id)["mpn"] == "R-100 1K"
    assert inv.get_part_id_by_mpn(conn, "R-100 1K") == part_id


def test_delete_part_is_all_or_nothing(conn, refs):
    inv.upsert_stock(conn, refs["part"], refs["l1"], 10)
    conn.execute(
        """
        CREATE TEMP TRIGGER trg_block_part_delete
        BEFORE DELETE ON parts
        BEGIN
          SELECT RAISE(ABORT, 'part delete blocked');
        END;
        """
    )
    with pytest.raises(sqlite3.IntegrityError):
        inv.delete_part(conn, refs["part"])
    assert inv.get_stock(conn, refs["part"], refs["l1"])["quantity"] == 10
    assert inv.get_part(conn, refs["part"])["mpn"] == "R-100-1K"
    assert not conn.in_transaction
