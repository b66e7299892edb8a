from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .db import connect
from .schemas import Principal


@dataclass
class UserRecord:
    id: str
    username: str
    first_name: str = ""
    last_name: str = ""
    role: str = "USER"

    @property
    def display_name(self) -> str:
        full = " ".join(p for p in (self.first_name, self.last_name) if p)
        return full or self.username


def display_name(username: str, first_name: Optional[str], last_name: Optional[str]) -> str:
    return UserRecord(id="", username=username, first_name=first_name or "", last_name=last_name or "").display_name


class UserDirectory:
    """Verifies caller ids against the users table."""

    def __init__(self, db_path: Path, timeout: float = 5.0):
        self.db_path = db_path
        self.timeout = timeout

    def get(self, user_id: str) -> Optional[UserRecord]:
        with connect(self.db_path, self.timeout) as conn:
            row = conn.execute(
                "SELECT id, username, first_name, last_name, role FROM users WHERE id = ?",
                (user_id,),
            ).fetchone()
        if row is None:
            return None
        return UserRecord(
            id=row["id"],
            username=row["username"],
            first_name=row["first_name"] or "",
            last_name=row["last_name"] or "",
            role=row["role"] or "USER",
        )

    def authenticate(self, user_id: Optional[str]) -> Optional[Principal]:
        """Unknown or blank ids yield no principal; callers treat that as anonymous."""
        user_id = (user_id or "").strip()
        if not user_id:
            return None
        user = self.get(user_id)
        if user is None:
            return None
        return Principal(id=user.id, role=user.role)

    def register(self, user: UserRecord) -> None:
        with connect(self.db_path, self.timeout) as conn:
            conn.execute(
                """
                INSERT INTO users (id, username, first_name, last_name, role)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    username = excluded.username,
                    first_name = excluded.first_name,
                    last_name = excluded.last_name,
                    role = excluded.role
                """,
                (user.id, user.username, user.first_name or None, user.last_name or None, user.role),
            )
