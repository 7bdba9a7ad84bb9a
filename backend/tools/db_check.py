import sqlite3
import sys

DB = sys.argv[1] if len(sys.argv) > 1 else "dev.db"
SKU = sys.argv[2] if len(sys.argv) > 2 else None

conn = sqlite3.connect(DB)
cur = conn.cursor()

print("=== Variant Stock ===")
cur.execute(
    "SELECT id, sku, quantity_on_hand, quantity_reserved, is_active FROM variant_stock ORDER BY sku"
)
variants = cur.fetchall()
for r in variants:
    print({"id": r[0], "sku": r[1], "on_hand": r[2], "reserved": r[3], "active": bool(r[4])})

print("\n=== Reserved vs active reservations ===")
cur.execute(
    """
    SELECT v.id, v.sku, v.quantity_reserved,
           COALESCE(SUM(CASE WHEN r.status = 'active' THEN r.quantity END), 0)
    FROM variant_stock v
    LEFT JOIN stock_reservations r ON r.variant_id = v.id
    GROUP BY v.id, v.sku, v.quantity_reserved
    """
)
for vid, sku, reserved, active_sum in cur.fetchall():
    flag = "ok" if reserved == active_sum else "MISMATCH"
    print(f"{sku} (id={vid}): reserved={reserved} active_sum={active_sum} {flag}")

print("\n=== Open reconciliation issues ===")
cur.execute(
    "SELECT id, reservation_id, order_ref, outcome, created_at FROM reconciliation_issues WHERE status='open'"
)
for r in cur.fetchall():
    print(r)

if SKU:
    cur.execute("SELECT id FROM variant_stock WHERE sku=?", (SKU,))
    row = cur.fetchone()
    if row is None:
        print(f"\nNo variant with SKU={SKU}")
    else:
        print(f"\n=== Reservations for SKU={SKU} ===")
        cur.execute(
            "SELECT id, quantity, status, cart_ref, order_ref, release_reason, created_at, expires_at "
            "FROM stock_reservations WHERE variant_id=? ORDER BY created_at DESC LIMIT 50",
            (row[0],),
        )
        for r in cur.fetchall():
            print(r)

        print(f"\n=== Movements for SKU={SKU} ===")
        cur.execute(
            "SELECT id, movement_type, counter, quantity, quantity_before, quantity_after, reason, reference_id, created_at "
            "FROM stock_movements WHERE variant_id=? ORDER BY id DESC LIMIT 50",
            (row[0],),
        )
        for r in cur.fetchall():
            print(r)

conn.close()
