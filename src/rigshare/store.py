"""
构建存储 - Build Store

持久化 builds / build_components 两张表，并提供事务边界。
Persists the builds and build_components tables and owns the transaction boundary.

写操作只能通过 ``run_in_transaction`` 拿到的 ``BuildStoreTransaction`` 执行，
因此组件行总是与其所属的 build 行处于同一事务中。
Writes are only reachable through the ``BuildStoreTransaction`` handed out by
``run_in_transaction``, so component rows always share the transaction of
their parent build row.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, TypeVar

from .catalog import component_from_row
from .db import connect
from .errors import TransactionFailure
from .identity import display_name
from .schemas import Component

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"

# SQLite INTEGER 为 64 位有符号整数
SQLITE_MAX_INTEGER = 2**63 - 1

SORT_COLUMNS = {
    "createdAt": "b.created_at",
    "name": "b.name",
    "totalPrice": "b.total_price",
}

BUILD_COLUMNS = """
    b.id, b.name, b.description, b.total_price, b.is_public, b.owner_id,
    b.created_at, b.updated_at,
    u.username AS owner_username, u.first_name AS owner_first_name, u.last_name AS owner_last_name
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(raw: str) -> datetime:
    return datetime.strptime(raw, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


@dataclass
class NewBuild:
    id: str
    name: str
    description: Optional[str]
    total_price: int
    is_public: bool
    owner_id: str


@dataclass
class NewBuildComponent:
    component_id: str
    category: str
    quantity: int


@dataclass
class BuildComponentRow:
    component_id: str
    category: str
    position: int
    quantity: int
    component: Component


@dataclass
class BuildRow:
    id: str
    name: str
    description: Optional[str]
    total_price: int
    is_public: bool
    owner_id: str
    owner_display_name: str
    created_at: datetime
    updated_at: datetime
    components: List[BuildComponentRow] = field(default_factory=list)


def _build_from_row(row: sqlite3.Row) -> BuildRow:
    return BuildRow(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        total_price=int(row["total_price"]),
        is_public=bool(row["is_public"]),
        owner_id=row["owner_id"],
        owner_display_name=display_name(
            row["owner_username"] or row["owner_id"],
            row["owner_first_name"],
            row["owner_last_name"],
        ),
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
    )


def _attach_components(conn: sqlite3.Connection, builds: List[BuildRow]) -> List[BuildRow]:
    if not builds:
        return builds
    by_id: Dict[str, BuildRow] = {b.id: b for b in builds}
    placeholders = ",".join("?" for _ in by_id)
    rows = conn.execute(
        f"""
        SELECT
          bc.build_id, bc.component_id, bc.category AS slot_category, bc.position, bc.quantity,
          c.id, c.name, c.brand, c.model, c.category, c.price, c.currency, c.images_json, c.specs_json
        FROM build_components bc
        JOIN components c ON c.id = bc.component_id
        WHERE bc.build_id IN ({placeholders})
        ORDER BY bc.build_id, bc.position
        """,
        tuple(by_id),
    ).fetchall()
    for row in rows:
        by_id[row["build_id"]].components.append(
            BuildComponentRow(
                component_id=row["component_id"],
                category=row["slot_category"],
                position=int(row["position"]),
                quantity=int(row["quantity"]),
                component=component_from_row(row),
            )
        )
    return builds


def _rollback(conn: sqlite3.Connection) -> None:
    if conn.in_transaction:
        conn.execute("ROLLBACK")


class BuildStoreTransaction:
    """Write primitives bound to one open transaction."""

    def __init__(self, conn: sqlite3.Connection, now: datetime, record_events: bool):
        self.conn = conn
        self.now = format_timestamp(now)
        self.record_events = record_events

    def owner_exists(self, owner_id: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM users WHERE id = ?", (owner_id,)).fetchone()
        return row is not None

    def insert(self, build: NewBuild, components: Sequence[NewBuildComponent]) -> None:
        self.conn.execute(
            """
            INSERT INTO builds (id, name, description, total_price, is_public, owner_id, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                build.id,
                build.name,
                build.description,
                build.total_price,
                1 if build.is_public else 0,
                build.owner_id,
                self.now,
                self.now,
            ),
        )
        self._insert_components(build.id, components)

    def replace_components(self, build_id: str, components: Sequence[NewBuildComponent]) -> None:
        self.conn.execute("DELETE FROM build_components WHERE build_id = ?", (build_id,))
        self._insert_components(build_id, components)

    def _insert_components(self, build_id: str, components: Sequence[NewBuildComponent]) -> None:
        self.conn.executemany(
            """
            INSERT INTO build_components (build_id, component_id, category, position, quantity)
            VALUES (?, ?, ?, ?, ?)
            """,
            [
                (build_id, c.component_id, c.category, position, c.quantity)
                for position, c in enumerate(components)
            ],
        )

    def update_fields(
        self,
        build_id: str,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        set_description: bool = False,
        is_public: Optional[bool] = None,
        total_price: Optional[int] = None,
    ) -> bool:
        """Patch scalar columns and bump updated_at. Returns False if the row is gone."""
        assignments = ["updated_at = ?"]
        params: List[object] = [self.now]
        if name is not None:
            assignments.append("name = ?")
            params.append(name)
        if set_description:
            assignments.append("description = ?")
            params.append(description)
        if is_public is not None:
            assignments.append("is_public = ?")
            params.append(1 if is_public else 0)
        if total_price is not None:
            assignments.append("total_price = ?")
            params.append(total_price)
        params.append(build_id)
        cur = self.conn.execute(
            f"UPDATE builds SET {', '.join(assignments)} WHERE id = ?",
            tuple(params),
        )
        return cur.rowcount > 0

    def delete_cascade(self, build_id: str) -> bool:
        self.conn.execute("DELETE FROM build_components WHERE build_id = ?", (build_id,))
        cur = self.conn.execute("DELETE FROM builds WHERE id = ?", (build_id,))
        return cur.rowcount > 0

    def record_event(self, build_id: str, owner_id: str, action: str) -> None:
        if not self.record_events:
            return
        self.conn.execute(
            "INSERT INTO build_events (build_id, owner_id, action, created_at) VALUES (?, ?, ?, ?)",
            (build_id, owner_id, action, self.now),
        )

    def find_with_components(self, build_id: str) -> Optional[BuildRow]:
        return _find_with_components(self.conn, build_id)


def _find_with_components(conn: sqlite3.Connection, build_id: str) -> Optional[BuildRow]:
    row = conn.execute(
        f"""
        SELECT {BUILD_COLUMNS}
        FROM builds b
        LEFT JOIN users u ON u.id = b.owner_id
        WHERE b.id = ?
        """,
        (build_id,),
    ).fetchone()
    if row is None:
        return None
    return _attach_components(conn, [_build_from_row(row)])[0]


class SQLiteBuildStore:
    def __init__(
        self,
        db_path: Path,
        *,
        timeout: float = 5.0,
        record_events: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db_path = db_path
        self.timeout = timeout
        self.record_events = record_events
        self.clock = clock

    def run_in_transaction(self, fn: Callable[[BuildStoreTransaction], T]) -> T:
        """
        在单个事务中执行 fn - Run ``fn`` inside exactly one transaction

        fn 正常返回则提交；抛出任何异常则回滚。sqlite3 错误被转换为 TransactionFailure，
        领域错误原样向上抛出。不做重试。
        Commits when ``fn`` returns and rolls back on any exception. sqlite3 errors
        surface as ``TransactionFailure``; domain errors propagate unchanged. No retry.
        """
        try:
            with connect(self.db_path, self.timeout) as conn:
                try:
                    conn.execute("BEGIN IMMEDIATE")
                    result = fn(BuildStoreTransaction(conn, self.clock(), self.record_events))
                    conn.execute("COMMIT")
                except BaseException:
                    _rollback(conn)
                    raise
                return result
        except sqlite3.Error as exc:
            logger.exception("build transaction aborted")
            raise TransactionFailure() from exc

    def find_with_components(self, build_id: str) -> Optional[BuildRow]:
        with connect(self.db_path, self.timeout) as conn:
            return _find_with_components(conn, build_id)

    def list_owned(self, owner_id: str, offset: int, limit: int) -> List[BuildRow]:
        with connect(self.db_path, self.timeout) as conn:
            rows = conn.execute(
                f"""
                SELECT {BUILD_COLUMNS}
                FROM builds b
                LEFT JOIN users u ON u.id = b.owner_id
                WHERE b.owner_id = ?
                ORDER BY b.updated_at DESC, b.rowid DESC
                LIMIT ? OFFSET ?
                """,
                (owner_id, limit, offset),
            ).fetchall()
            return _attach_components(conn, [_build_from_row(r) for r in rows])

    def list_public(self, offset: int, limit: int, sort_field: str, sort_order: str) -> List[BuildRow]:
        column = SORT_COLUMNS[sort_field]
        direction = "ASC" if sort_order == "asc" else "DESC"
        with connect(self.db_path, self.timeout) as conn:
            rows = conn.execute(
                f"""
                SELECT {BUILD_COLUMNS}
                FROM builds b
                LEFT JOIN users u ON u.id = b.owner_id
                WHERE b.is_public = 1
                ORDER BY {column} {direction}, b.rowid {direction}
                LIMIT ? OFFSET ?
                """,
                (limit, offset),
            ).fetchall()
            return _attach_components(conn, [_build_from_row(r) for r in rows])

    def count_owned(self, owner_id: str) -> int:
        with connect(self.db_path, self.timeout) as conn:
            return int(conn.execute("SELECT COUNT(*) FROM builds WHERE owner_id = ?", (owner_id,)).fetchone()[0])

    def count_public(self) -> int:
        with connect(self.db_path, self.timeout) as conn:
            return int(conn.execute("SELECT COUNT(*) FROM builds WHERE is_public = 1").fetchone()[0])

    def stats(self) -> dict:
        with connect(self.db_path, self.timeout) as conn:
            total, public = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(is_public), 0) FROM builds"
            ).fetchone()
            event_rows = conn.execute(
                "SELECT action, COUNT(*) FROM build_events GROUP BY action"
            ).fetchall()
        return {
            "total_builds": int(total),
            "public_builds": int(public),
            "events_by_action": {action: int(count) for action, count in event_rows},
        }

    def ping(self) -> bool:
        try:
            with connect(self.db_path, self.timeout) as conn:
                conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            logger.warning("build store unreachable: %s", self.db_path, exc_info=True)
            return False
