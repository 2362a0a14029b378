import sqlite3
from pathlib import Path

from partstock.config import configure_logging, load_settings
from partstock.core import InventoryService
from partstock.errors import NegativeQuantityError, ReferentialConflictError

ROOT = Path(__file__).resolve().parents[1]
DB = ROOT / "smoke_ledger.db"

configure_logging(load_settings().log_level)

for suffix in ("", "-wal", "-shm"):
    Path(f"{DB}{suffix}").unlink(missing_ok=True)

service = InventoryService(DB)
resistor = service.create_category("Resistor")
footprint = service.create_footprint("0603")
part = service.create_part(resistor.id, footprint.id, mpn="SMOKE-LEDGER-001", value=1000.0, comments="smoke part")
l1 = service.create_location("C409-G01-S01-P01")
l2 = service.create_location("C409-G01-S01-P02")

service.upsert_stock(part.id, l1.id, 50)
try:
    service.upsert_stock(part.id, l1.id, -60)
    raise RuntimeError("overdraw was accepted")
except NegativeQuantityError:
    pass
service.move_stock(part.id, l1.id, l2.id, 20)
service.set_staged(part.id, l2.id, 5)
try:
    service.delete_location(l1.id)
    raise RuntimeError("location with stock was deleted")
except ReferentialConflictError:
    pass

conn = sqlite3.connect(DB)
q1 = conn.execute("SELECT quantity FROM stock WHERE part_id=? AND location_id=?", (part.id, l1.id)).fetchone()[0]
q2, staged = conn.execute("SELECT quantity, staged FROM stock WHERE part_id=? AND location_id=?", (part.id, l2.id)).fetchone()
view_rows = conn.execute("SELECT COUNT(*) FROM inventory WHERE id=?", (part.id,)).fetchone()[0]
conn.close()

assert q1 == 30, q1
assert q2 == 20, q2
assert staged == 5, staged
assert view_rows == 2, view_rows

service.delete_part(part.id)
assert service.list_inventory(part.id) == []
print("smoke_test_ledger: PASS")
