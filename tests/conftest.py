import pytest

from partstock import inv
from partstock.core import InventoryService
from partstock.db import connect, init_db


@pytest.fixture
def conn(tmp_path):
    conn = connect(tmp_path / "inventory.db")
    init_db(conn)
    yield conn
    conn.close()


@pytest.fixture
def refs(conn):
    """Reference data most ledger tests need: one category, footprint, part and two locations."""
    category_id = inv.create_category(conn, "Resistor")
    footprint_id = inv.create_footprint(conn, "0603")
    part_id = inv.create_part(conn, category_id, footprint_id, mpn="R-100-1K", value=1000.0, comments="1k thin film")
    return {
        "category": category_id,
        "footprint": footprint_id,
        "part": part_id,
        "l1": inv.create_location(conn, "L1", "drawer 1"),
        "l2": inv.create_location(conn, "L2"),
    }


@pytest.fixture
def service(tmp_path):
    return InventoryService(tmp_path / "service.db", busy_timeout=10)
