"""
User directory: the read side of the identity provider the incident core
joins against (reporter names and emails, recent sign-ups, user counts).
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional

from modules.shared.db import execute_query
from modules.shared.errors import ConflictError
from modules.shared.utils import utcnow
from .models import User


class UserDirectory(ABC):

    @abstractmethod
    async def create(self, user: User) -> User:
        ...

    @abstractmethod
    async def get_by_id(self, user_id: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[User]:
        ...

    @abstractmethod
    async def get_many(self, user_ids: Iterable[str]) -> Dict[str, User]:
        ...

    @abstractmethod
    async def recent(self, limit: int) -> List[User]:
        ...

    @abstractmethod
    async def count(self, active_only: bool = False) -> int:
        ...


def _row_to_user(row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        email=row["email"],
        role=row["role"],
        is_active=row["is_active"],
        created_at=row["created_at"],
        password_hash=row["password_hash"],
    )


class PostgresUserDirectory(UserDirectory):

    async def create(self, user):
        row = await execute_query(
            """
            INSERT INTO users (id, name, email, password_hash, role, is_active, created_at)
            VALUES ($1, $2, $3, $4, $5, $6, COALESCE($7, NOW()))
            ON CONFLICT (email) DO NOTHING
            RETURNING *
            """,
            (user.id, user.name, user.email.lower(), user.password_hash, user.role.value, user.is_active, user.created_at),
            fetch_one=True,
        )
        if not row:
            raise ConflictError("Email is already registered")
        return _row_to_user(row)

    async def get_by_id(self, user_id):
        row = await execute_query("SELECT * FROM users WHERE id = $1", (user_id,), fetch_one=True)
        return _row_to_user(row) if row else None

    async def get_by_email(self, email):
        row = await execute_query("SELECT * FROM users WHERE email = $1", (email.lower(),), fetch_one=True)
        return _row_to_user(row) if row else None

    async def get_many(self, user_ids):
        ids = sorted({i for i in user_ids if i})
        if not ids:
            return {}
        rows = await execute_query("SELECT * FROM users WHERE id = ANY($1::text[])", (ids,))
        return {r["id"]: _row_to_user(r) for r in rows}

    async def recent(self, limit):
        rows = await execute_query("SELECT * FROM users ORDER BY created_at DESC, id ASC LIMIT $1", (limit,))
        return [_row_to_user(r) for r in rows]

    async def count(self, active_only=False):
        query = "SELECT COUNT(*) AS total FROM users"
        if active_only:
            query += " WHERE is_active"
        row = await execute_query(query, fetch_one=True)
        return row["total"] if row else 0


class MemoryUserDirectory(UserDirectory):

    def __init__(self):
        self._users: Dict[str, User] = {}
        self._lock = asyncio.Lock()

    async def create(self, user):
        async with self._lock:
            email = user.email.lower()
            if any(u.email == email for u in self._users.values()):
                raise ConflictError("Email is already registered")
            stored = user.model_copy(update={"email": email, "created_at": user.created_at or utcnow()})
            self._users[stored.id] = stored
            return stored.model_copy()

    async def get_by_id(self, user_id):
        user = self._users.get(user_id)
        return user.model_copy() if user else None

    async def get_by_email(self, email):
        email = email.lower()
        for user in self._users.values():
            if user.email == email:
                return user.model_copy()
        return None

    async def get_many(self, user_ids):
        return {i: self._users[i].model_copy() for i in set(user_ids) if i in self._users}

    async def recent(self, limit):
        users = sorted(self._users.values(), key=lambda u: u.id)
        users.sort(key=lambda u: u.created_at, reverse=True)
        return [u.model_copy() for u in users[:limit]]

    async def count(self, active_only=False):
        return sum(1 for u in self._users.values() if u.is_active or not active_only)
