#!/usr/bin/env python3
"""
Seed sneaker variants from a JSON file.

Accepts either a list of variant entries or a list of products that each carry
a `variants` list. Existing SKUs keep their counters (registration never
overwrites stock); use the admin adjust endpoint for restocks.

Usage:
    python scripts/seed_variants.py --file scripts/variants.json
"""
import argparse
import json
import os
import sys

from stockhold.db import SessionLocal, init_db
from stockhold.services.stock_admin_service import StockAdminService

# a few SKUs handy for manual testing with tools/concurrency_reserve.py
DEV_VARIANTS = [
    {"sku": "RUN-42-BLK", "product_sku": "RUN", "product_name": "Runner", "size": "42", "color": "black", "stock": 10},
    {"sku": "RUN-43-BLK", "product_sku": "RUN", "product_name": "Runner", "size": "43", "color": "black", "stock": 3},
    {"sku": "HI-41-WHT", "product_sku": "HI", "product_name": "High Top", "size": "41", "color": "white", "stock": 1},
]


def _normalize_entry(entry, product=None):
    """Return a dict of register_variant kwargs, or None when the entry has no SKU."""
    product = product or {}
    sku = entry.get("sku") or entry.get("id")
    if not sku:
        return None
    try:
        stock = int(entry.get("stock", entry.get("quantity", 0)) or 0)
    except (TypeError, ValueError):
        stock = 0
    threshold = entry.get("low_stock_threshold")
    active = entry.get("active")
    return {
        "sku": str(sku),
        "product_sku": entry.get("product_sku") or product.get("sku"),
        "product_name": entry.get("product_name") or product.get("name"),
        "size": str(entry["size"]) if entry.get("size") is not None else None,
        "color": entry.get("color") or entry.get("colour"),
        "initial_on_hand": max(0, stock),
        "low_stock_threshold": int(threshold) if threshold is not None else None,
        "product_low_stock_threshold": product.get("low_stock_threshold"),
        "is_active": bool(active) if active is not None else None,
    }


def load_entries(path):
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except ValueError as e:
            raise RuntimeError(f"Failed to parse JSON from {path}: {e}")

    if isinstance(data, dict):
        data = data.get("items", list(data.values()))

    entries = []
    for item in data if isinstance(data, list) else []:
        if isinstance(item.get("variants"), list):
            entries.extend(_normalize_entry(v, product=item) for v in item["variants"])
        else:
            entries.append(_normalize_entry(item))
    return [e for e in entries if e]


def seed(entries):
    init_db()
    db = SessionLocal()
    try:
        svc = StockAdminService(db)
        for entry in entries:
            svc.register_variant(**entry)
        print("Seeded variants:", len(entries))
    finally:
        db.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser()
    parser.add_argument("--file", "-f", help="Path to a JSON list of variants or products with variants")
    args = parser.parse_args()
    if args.file:
        if not os.path.exists(args.file):
            print("File not found:", args.file)
            sys.exit(1)
        entries = load_entries(args.file)
    else:
        entries = [_normalize_entry(v) for v in DEV_VARIANTS]
    seed(entries)
