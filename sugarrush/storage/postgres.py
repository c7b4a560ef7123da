from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from psycopg import errors
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from sugarrush.logging import get_logger
from sugarrush.storage.errors import ConstraintViolation
from sugarrush.storage.models import User, new_object_id

_USER_COLUMNS = (
    "id, google_id, username, email, role, preferred_name, phone_number, date_created"
)


class PostgresStore:
    """Postgres-backed user directory."""

    def __init__(self, dsn: str) -> None:
        self.dsn = dsn
        self.logger = get_logger(__name__)
        self.pool = ConnectionPool(
            self.dsn,
            min_size=1,
            max_size=10,
            kwargs={"row_factory": dict_row, "autocommit": False},
        )
        self._ensure_schema()

    def _connect(self):
        return self.pool.connection()

    def _ensure_schema(self) -> None:
        """Create the ``app_user`` table if it is missing."""

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS app_user (
                    id CHAR(24) PRIMARY KEY,
                    google_id TEXT NOT NULL UNIQUE,
                    username TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    role TEXT NOT NULL,
                    preferred_name TEXT NOT NULL DEFAULT '',
                    phone_number TEXT NOT NULL DEFAULT '',
                    date_created TIMESTAMPTZ NOT NULL DEFAULT now()
                )
                """
            )

    def verify_connection(self) -> None:
        with self._connect() as conn:
            conn.execute("SELECT 1").fetchone()

    def close(self) -> None:
        self.pool.close()

    @staticmethod
    def _row_to_user(row: Dict[str, Any]) -> User:
        created = row.get("date_created") or datetime.now(timezone.utc)
        return User(
            id=str(row["id"]),
            google_id=row["google_id"],
            username=row["username"],
            email=row["email"],
            role=row["role"],
            preferred_name=row.get("preferred_name") or "",
            phone_number=row.get("phone_number") or "",
            date_created=created,
        )

    @staticmethod
    def _constraint_from(exc: errors.UniqueViolation) -> ConstraintViolation:
        constraint = getattr(getattr(exc, "diag", None), "constraint_name", "") or ""
        field = "google_id" if "google_id" in constraint else "email"
        return ConstraintViolation(f"{field} already exists", {"field": field})

    def create_user(
        self,
        google_id: str,
        username: str,
        email: str,
        *,
        role: str,
        preferred_name: str = "",
        phone_number: str = "",
    ) -> User:
        user_id = new_object_id()
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    INSERT INTO app_user (id, google_id, username, email, role, preferred_name, phone_number)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_USER_COLUMNS}
                    """,
                    (user_id, google_id, username, email, role, preferred_name, phone_number),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise self._constraint_from(exc) from exc
        self.logger.info("user_created", user_id=user_id, role=role)
        return self._row_to_user(row)

    def get_user(self, user_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user WHERE id = %s", (user_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_google_id(self, google_id: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user WHERE google_id = %s", (google_id,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user WHERE email = %s", (email,)
            ).fetchone()
        return self._row_to_user(row) if row else None

    def update_user_identity(self, user_id: str, username: str, email: str) -> Optional[User]:
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"""
                    UPDATE app_user SET username = %s, email = %s
                    WHERE id = %s
                    RETURNING {_USER_COLUMNS}
                    """,
                    (username, email, user_id),
                ).fetchone()
        except errors.UniqueViolation as exc:
            raise self._constraint_from(exc) from exc
        return self._row_to_user(row) if row else None

    def update_user(
        self,
        user_id: str,
        *,
        preferred_name: Optional[str] = None,
        phone_number: Optional[str] = None,
        role: Optional[str] = None,
    ) -> Optional[User]:
        updates = {
            "preferred_name": preferred_name,
            "phone_number": phone_number,
            "role": role,
        }
        assignments = [(col, val) for col, val in updates.items() if val is not None]
        if not assignments:
            return self.get_user(user_id)
        set_clause = ", ".join(f"{col} = %s" for col, _ in assignments)
        params = [val for _, val in assignments] + [user_id]
        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE app_user SET {set_clause} WHERE id = %s RETURNING {_USER_COLUMNS}",
                params,
            ).fetchone()
        return self._row_to_user(row) if row else None

    def list_users(
        self, *, role: Optional[str] = None, name: Optional[str] = None
    ) -> List[User]:
        clauses: List[str] = []
        params: List[Any] = []
        if role:
            clauses.append("role = %s")
            params.append(role)
        if name:
            clauses.append("username ILIKE %s")
            escaped = name.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            params.append(f"%{escaped}%")
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_USER_COLUMNS} FROM app_user {where} ORDER BY date_created",
                params,
            ).fetchall()
        return [self._row_to_user(row) for row in rows]

    def delete_user(self, user_id: str) -> bool:
        with self._connect() as conn:
            cur = conn.execute("DELETE FROM app_user WHERE id = %s", (user_id,))
            return cur.rowcount > 0


__all__ = ["PostgresStore"]
