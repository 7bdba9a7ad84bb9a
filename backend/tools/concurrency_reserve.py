import argparse
import concurrent.futures
import os

import requests

BASE = os.environ.get("STOCKHOLD_BASE", "http://127.0.0.1:8000")


def reserve_task(i, variant_id, qty, hold):
    payload = {"variant_id": variant_id, "quantity": qty, "hold_minutes": hold, "cart_ref": f"load-{i}"}
    try:
        r = requests.post(f"{BASE}/api/inventory/reservations", json=payload, timeout=10)
        return (i, "reserve", r.status_code, r.json())
    except Exception as e:
        return (i, "reserve", "ERR", str(e))


def confirm_task(i, reservation_id, order_ref):
    try:
        r = requests.post(
            f"{BASE}/api/inventory/reservations/{reservation_id}/confirm",
            json={"order_ref": order_ref},
            timeout=10,
        )
        return (i, "confirm", r.status_code, r.json())
    except Exception as e:
        return (i, "confirm", "ERR", str(e))


def release_task(i, reservation_id):
    try:
        r = requests.post(f"{BASE}/api/inventory/reservations/{reservation_id}/release", timeout=10)
        return (i, "release", r.status_code, r.json())
    except Exception as e:
        return (i, "release", "ERR", str(e))


def _available(variant_id):
    r = requests.get(f"{BASE}/api/inventory/variants/{variant_id}/available", timeout=10)
    r.raise_for_status()
    return r.json()


def run_reserve_concurrent(workers, variant_id, qty, hold):
    before = _available(variant_id)
    print(f"Running reserve test: workers={workers}, variant={variant_id}, qty={qty}, available={before['available']}")
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = [ex.submit(reserve_task, i, variant_id, qty, hold) for i in range(workers)]
        results = [f.result() for f in futures]
    for r in results:
        print(r)
    won = [r for r in results if r[2] == 201]
    print(f"Reservations granted: {len(won)} (at most {before['available'] // qty} possible)")
    print("After:", _available(variant_id))
    if len(won) * qty > before["available"]:
        print("OVERSOLD")


def run_race(workers, variant_id):
    """Fire confirm and release at the same reservation; exactly one should win."""
    res = reserve_task(0, variant_id, 1, 5)
    if res[2] != 201:
        print("Could not reserve:", res)
        return
    rid = res[3]["id"]
    print(f"Racing confirm vs release on reservation {rid} with {workers} workers")
    with concurrent.futures.ThreadPoolExecutor(max_workers=workers) as ex:
        futures = []
        for i in range(workers):
            if i % 2:
                futures.append(ex.submit(release_task, i, rid))
            else:
                futures.append(ex.submit(confirm_task, i, rid, f"race-{rid}"))
        results = [f.result() for f in futures]
    for r in results:
        print(r)
    final = requests.get(f"{BASE}/api/inventory/reservations/{rid}", timeout=10).json()
    print("Final status:", final["status"])


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Concurrency test tool (reserve or race).")
    sub = parser.add_subparsers(dest="mode", required=True)

    r = sub.add_parser("reserve")
    r.add_argument("--variant", type=int, required=True)
    r.add_argument("--qty", type=int, default=1)
    r.add_argument("--hold", type=int, default=15)
    r.add_argument("--workers", type=int, default=8)

    c = sub.add_parser("race")
    c.add_argument("--variant", type=int, required=True)
    c.add_argument("--workers", type=int, default=8)

    args = parser.parse_args()

    if args.mode == "reserve":
        run_reserve_concurrent(args.workers, args.variant, args.qty, args.hold)
    elif args.mode == "race":
        run_race(args.workers, args.variant)
