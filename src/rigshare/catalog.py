from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Dict, Iterable, Optional, Protocol

from .db import connect
from .schemas import Component


class ComponentCatalog(Protocol):
    def resolve(self, component_id: str) -> Optional[Component]: ...
    def resolve_many(self, component_ids: Iterable[str]) -> Dict[str, Component]: ...


def component_from_row(row: sqlite3.Row) -> Component:
    return Component(
        id=row["id"],
        name=row["name"],
        brand=row["brand"],
        model=row["model"] or "",
        category=row["category"],
        price=int(row["price"]),
        currency=row["currency"] or "KZT",
        images=json.loads(row["images_json"] or "[]"),
        specs=json.loads(row["specs_json"] or "{}"),
    )


class SQLiteComponentCatalog:
    """
    组件目录 - Component catalog

    价格的唯一来源，每次调用都读取当前值，不做缓存。
    Source of truth for prices; every call reads current values, nothing is cached.
    """

    def __init__(self, db_path: Path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def resolve(self, component_id: str) -> Optional[Component]:
        return self.resolve_many([component_id]).get(component_id)

    def resolve_many(self, component_ids: Iterable[str]) -> Dict[str, Component]:
        ids = sorted({cid for cid in component_ids if cid})
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        with connect(self.db_path, self.timeout) as conn:
            rows = conn.execute(
                f"""
                SELECT id, name, brand, model, category, price, currency, images_json, specs_json
                FROM components
                WHERE id IN ({placeholders})
                """,
                tuple(ids),
            ).fetchall()
        return {row["id"]: component_from_row(row) for row in rows}

    def upsert(self, component: Component) -> None:
        with connect(self.db_path, self.timeout) as conn:
            conn.execute(
                """
                INSERT INTO components (id, name, brand, model, category, price, currency, images_json, specs_json, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
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
                (
                    component.id,
                    component.name,
                    component.brand,
                    component.model,
                    component.category,
                    component.price,
                    component.currency,
                    json.dumps(component.images, ensure_ascii=False),
                    json.dumps(component.specs, ensure_ascii=False),
                ),
            )
