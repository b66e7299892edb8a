from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List

from .db import connect, init_schema

logger = logging.getLogger(__name__)

VALID_CATEGORIES = {
    "CPU",
    "GPU",
    "MOTHERBOARD",
    "RAM",
    "STORAGE",
    "PSU",
    "CASE",
    "COOLING",
    "PERIPHERALS",
}

VALID_ROLES = {"USER", "ADMIN"}


def _to_int(v: str) -> int:
    try:
        return int(float(v or 0))
    except (ValueError, OverflowError):
        return 0


def _json_list(raw: str) -> List[str]:
    """images 列可以是 JSON 数组，也可以是 | 分隔的 URL"""
    raw = (raw or "").strip()
    if not raw:
        return []
    if raw.startswith("["):
        try:
            value = json.loads(raw)
        except json.JSONDecodeError:
            return []
        return [str(v) for v in value if v]
    return [part.strip() for part in raw.split("|") if part.strip()]


def _json_dict(raw: str) -> Dict[str, object]:
    raw = (raw or "").strip()
    if not raw:
        return {}
    try:
        value = json.loads(raw)
    except json.JSONDecodeError:
        return {}
    return value if isinstance(value, dict) else {}


def _iter_component_rows(path: Path) -> Iterable[Dict[str, object]]:
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        for row in reader:
            category = (row.get("category") or "").strip().upper()
            if category not in VALID_CATEGORIES:
                continue
            component_id = (row.get("id") or "").strip()
            name = (row.get("name") or "").strip()
            if not component_id or not name:
                continue

            # 过滤价格为 0 或无效的产品
            price = _to_int((row.get("price") or "").strip())
            if price <= 0:
                continue

            yield {
                "id": component_id,
                "name": name,
                "brand": (row.get("brand") or "").strip() or "Unknown",
                "model": (row.get("model") or "").strip(),
                "category": category,
                "price": price,
                "currency": (row.get("currency") or "").strip().upper() or "KZT",
                "images_json": json.dumps(_json_list(row.get("images") or ""), ensure_ascii=False),
                "specs_json": json.dumps(_json_dict(row.get("specs_json") or ""), ensure_ascii=False),
            }


def rebuild_catalog(db_path: Path, components_csv: Path) -> dict:
    """
    从 CSV 重建组件目录 - Rebuild the component catalog from CSV

    已存在的组件按 id 覆盖更新，价格变化会在下一次替换组件时生效；
    不会删除已被 build 引用的组件。
    Existing components are overwritten by id, so price changes take effect the
    next time a build's component set is replaced. Components referenced by
    builds are never dropped.
    """
    if not components_csv.exists():
        raise RuntimeError(f"required CSV data file missing: {components_csv}")
    init_schema(db_path)
    rows = list(_iter_component_rows(components_csv))
    with connect(db_path) as conn:
        conn.execute("BEGIN")
        conn.executemany(
            """
            INSERT INTO components (id, name, brand, model, category, price, currency, images_json, specs_json, updated_at)
            VALUES (:id, :name, :brand, :model, :category, :price, :currency, :images_json, :specs_json, CURRENT_TIMESTAMP)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                brand = excluded.brand,
                model = excluded.model,
                category = excluded.category,
                price = excluded.price,
                currency = excluded.currency,
                images_json = excluded.images_json,
                specs_json = excluded.specs_json,
                updated_at = CURRENT_TIMESTAMP
            """,
            rows,
        )
        conn.execute("COMMIT")
        total = conn.execute("SELECT COUNT(*) FROM components").fetchone()[0]
    logger.info("catalog rebuilt from %s: %d rows imported, %d total", components_csv, len(rows), total)
    return {
        "db": str(db_path),
        "rows_processed": len(rows),
        "rows_total": int(total),
        "components_csv": str(components_csv),
    }


def import_users(db_path: Path, users_csv: Path) -> dict:
    if not users_csv.exists():
        raise RuntimeError(f"required CSV data file missing: {users_csv}")
    init_schema(db_path)
    rows = []
    with users_csv.open("r", encoding="utf-8", newline="") as f:
        for row in csv.DictReader(f):
            user_id = (row.get("id") or "").strip()
            username = (row.get("username") or "").strip()
            if not user_id or not username:
                continue
            role = (row.get("role") or "").strip().upper()
            rows.append(
                (
                    user_id,
                    username,
                    (row.get("first_name") or "").strip() or None,
                    (row.get("last_name") or "").strip() or None,
                    role if role in VALID_ROLES else "USER",
                )
            )
    with connect(db_path) as conn:
        conn.execute("BEGIN")
        conn.executemany(
            """
            INSERT INTO users (id, username, first_name, last_name, role)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                username = excluded.username,
                first_name = excluded.first_name,
                last_name = excluded.last_name,
                role = excluded.role
            """,
            rows,
        )
        conn.execute("COMMIT")
    logger.info("users imported from %s: %d rows", users_csv, len(rows))
    return {"db": str(db_path), "rows_processed": len(rows), "users_csv": str(users_csv)}
