#!/usr/bin/env python3
"""Seed a starter eyewear catalog through the admin API.

Flow:
1) Resolve or create the sunglasses/eyeglasses/sports categories
2) Create one product per category
3) Write the default store settings
"""

from __future__ import annotations

import argparse
import os
import sys
from typing import Any, Dict, List

import httpx


DEFAULT_BASE_URL = "http://127.0.0.1:8000"

CATEGORIES: List[Dict[str, str]] = [
    {"name": "Sunglasses", "slug": "sunglasses", "description": "UV-protective frames for everyday wear"},
    {"name": "Eyeglasses", "slug": "eyeglasses", "description": "Prescription-ready optical frames"},
    {"name": "Sports", "slug": "sports", "description": "Wraparound frames for active use"},
]

PRODUCTS: List[Dict[str, Any]] = [
    {
        "category_slug": "sunglasses",
        "name": "Aviator Classic",
        "brand": "VisionCraft",
        "price": "129.00",
        "stock": 40,
        "features": ["Polarized lenses", "Metal frame"],
    },
    {
        "category_slug": "eyeglasses",
        "name": "Round Acetate Frame",
        "brand": "VisionCraft",
        "price": "89.00",
        "stock": 60,
        "features": ["Spring hinges", "Blue-light ready"],
    },
    {
        "category_slug": "sports",
        "name": "Trail Shield",
        "brand": "VisionCraft",
        "price": "59.50",
        "stock": 25,
        "features": ["Impact resistant", "Rubber nose pads"],
    },
]


class ApiError(RuntimeError):
    pass


def _json_or_text(response: httpx.Response) -> Any:
    try:
        return response.json()
    except Exception:
        return response.text


def _require_success(response: httpx.Response, context: str) -> Dict[str, Any]:
    payload = _json_or_text(response)
    if response.status_code >= 400:
        raise ApiError(f"{context} failed ({response.status_code}): {payload}")
    if not isinstance(payload, dict):
        raise ApiError(f"{context} returned non-JSON payload: {payload}")
    if payload.get("success") is False:
        raise ApiError(f"{context} returned success=false: {payload}")
    return payload


def ensure_categories(client: httpx.Client) -> Dict[str, int]:
    payload = _require_success(client.get("/api/categories"), "List categories")
    category_ids = {item["slug"]: item["id"] for item in payload.get("data") or []}

    for category in CATEGORIES:
        if category["slug"] in category_ids:
            continue
        created = _require_success(client.post("/api/categories", json=category), f"Create category {category['slug']}")
        category_ids[category["slug"]] = created["data"]["id"]

    return category_ids


def ensure_products(client: httpx.Client, category_ids: Dict[str, int]) -> List[Dict[str, Any]]:
    created: List[Dict[str, Any]] = []
    for item in PRODUCTS:
        body = {key: value for key, value in item.items() if key != "category_slug"}
        body["category_id"] = category_ids[item["category_slug"]]

        payload = _require_success(client.post("/api/products", json=body), f"Create product {item['name']}")
        created.append(payload["data"])
    return created


def write_default_settings(client: httpx.Client, store_name: str) -> Dict[str, Any]:
    payload = _require_success(
        client.put("/api/settings", json={"storeName": store_name, "currency": "USD"}),
        "Update settings",
    )
    return payload["data"]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Seed the storefront catalog via the admin API")
    parser.add_argument("--base-url", default=os.getenv("STOREFRONT_BASE_URL", DEFAULT_BASE_URL))
    parser.add_argument("--token", default=os.getenv("STOREFRONT_ADMIN_TOKEN", ""))
    parser.add_argument("--store-name", default="VisionCraft")
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    if not args.token:
        print("ERROR: Set --token or STOREFRONT_ADMIN_TOKEN", file=sys.stderr)
        return 2

    headers = {"Authorization": f"Bearer {args.token}"}
    with httpx.Client(base_url=args.base_url, headers=headers, timeout=30.0) as client:
        category_ids = ensure_categories(client)
        products = ensure_products(client, category_ids)
        write_default_settings(client, args.store_name)

        print("Created products:")
        for product in products:
            print(f"- {product['slug']}: id={product['id']}, price={product['price']}")

    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except ApiError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        raise SystemExit(1)
