"""Repository for users, login/reset sessions and rate-limit windows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable

from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.errors import DuplicateKeyError

from app.auth.models import AuthUser, LoginSession, PasswordResetSession, RateLimitRecord

LOGGER = logging.getLogger(__name__)

USERS = "users"
LOGIN_SESSIONS = "login_sessions"
RESET_SESSIONS = "password_reset_sessions"
RATE_LIMITS = "rate_limits"

_NO_ID = {"_id": 0}


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AuthRepository:
    """Auth repository with MongoDB primary and file-store fallback.

    Every state transition that must not race (rate-limit increments,
    consuming a session, verifying a reset code) is a single conditional
    store operation. The JSON fallback serializes all access behind one
    ``asyncio.Lock`` and is meant for a single development process.
    """

    def __init__(
        self,
        app_root: Path,
        *,
        mongo_uri: str = "",
        mongo_db: str = "portal",
        fallback_dir: str = "runtime/auth_store",
    ) -> None:
        self._fallback_dir = app_root / fallback_dir
        self._file_lock = asyncio.Lock()
        self._client: AsyncMongoClient | None = None
        self._db: Any = None

        if mongo_uri:
            self._client = AsyncMongoClient(mongo_uri, serverSelectionTimeoutMS=3000)
            self._db = self._client[mongo_db]
        else:
            self._fallback_dir.mkdir(parents=True, exist_ok=True)
            LOGGER.warning("auth_store_file_fallback")

    @property
    def uses_mongo(self) -> bool:
        return self._db is not None

    async def ensure_indexes(self) -> None:
        """Create the unique indexes the atomic operations rely on."""
        if self._db is None:
            return
        await self._db[USERS].create_index("email", unique=True)
        await self._db[USERS].create_index("user_id", unique=True)
        await self._db[LOGIN_SESSIONS].create_index("session_id", unique=True)
        await self._db[LOGIN_SESSIONS].create_index("user_id")
        await self._db[RESET_SESSIONS].create_index("session_id", unique=True)
        # One live reset session per user.
        await self._db[RESET_SESSIONS].create_index("user_id", unique=True)
        await self._db[RATE_LIMITS].create_index("key", unique=True)
        for name in (LOGIN_SESSIONS, RESET_SESSIONS, RATE_LIMITS):
            await self._db[name].create_index("expires_at")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()

    # -- file fallback ---------------------------------------------------

    def _collection_file(self, name: str) -> Path:
        return self._fallback_dir / f"{name}.json"

    def _read_json_file(self, name: str) -> list[dict[str, Any]]:
        """Read list payload from JSON file with empty fallback."""
        path = self._collection_file(name)
        if not path.exists():
            return []
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            LOGGER.warning("auth_store_file_unreadable", extra={"path": str(path)})
            return []
        return payload if isinstance(payload, list) else []

    def _write_json_file(self, name: str, items: list[dict[str, Any]]) -> None:
        path = self._collection_file(name)
        path.write_text(json.dumps(items, ensure_ascii=False, indent=2), encoding="utf-8")

    async def _find_file_row(
        self, name: str, match: Callable[[dict[str, Any]], bool]
    ) -> dict[str, Any] | None:
        async with self._file_lock:
            for row in self._read_json_file(name):
                if match(row):
                    return row
        return None

    async def _delete_file_rows(
        self, name: str, match: Callable[[dict[str, Any]], bool]
    ) -> list[dict[str, Any]]:
        async with self._file_lock:
            items = self._read_json_file(name)
            removed = [row for row in items if match(row)]
            if removed:
                self._write_json_file(name, [row for row in items if not match(row)])
        return removed

    async def _update_file_row(
        self,
        name: str,
        match: Callable[[dict[str, Any]], bool],
        changes: dict[str, Any],
    ) -> dict[str, Any] | None:
        async with self._file_lock:
            items = self._read_json_file(name)
            for row in items:
                if match(row):
                    row.update(changes)
                    self._write_json_file(name, items)
                    return row
        return None

    # -- users -----------------------------------------------------------

    async def get_user_by_email(self, email: str) -> AuthUser | None:
        key = normalize_email(email)
        if self._db is not None:
            doc = await self._db[USERS].find_one({"email": key}, _NO_ID)
            return AuthUser.model_validate(doc) if doc else None

        row = await self._find_file_row(
            USERS, lambda item: normalize_email(str(item.get("email", ""))) == key
        )
        return AuthUser.model_validate(row) if row else None

    async def get_user_by_id(self, user_id: str) -> AuthUser | None:
        if self._db is not None:
            doc = await self._db[USERS].find_one({"user_id": user_id}, _NO_ID)
            return AuthUser.model_validate(doc) if doc else None

        row = await self._find_file_row(USERS, lambda item: item.get("user_id") == user_id)
        return AuthUser.model_validate(row) if row else None

    async def upsert_user(self, user: AuthUser) -> None:
        """Create or replace a user keyed by normalized email."""
        doc = user.model_dump()
        doc["email"] = normalize_email(user.email)
        if self._db is not None:
            await self._db[USERS].update_one({"email": doc["email"]}, {"$set": doc}, upsert=True)
            return

        async with self._file_lock:
            items = self._read_json_file(USERS)
            next_items = [
                row
                for row in items
                if normalize_email(str(row.get("email", ""))) != doc["email"]
            ]
            next_items.append(doc)
            self._write_json_file(USERS, next_items)

    async def update_user(self, user_id: str, changes: dict[str, Any]) -> bool:
        if self._db is not None:
            result = await self._db[USERS].update_one({"user_id": user_id}, {"$set": changes})
            return result.matched_count > 0

        row = await self._update_file_row(
            USERS, lambda item: item.get("user_id") == user_id, changes
        )
        return row is not None

    # -- login sessions --------------------------------------------------

    async def insert_login_session(self, session: LoginSession) -> None:
        doc = session.model_dump()
        if self._db is not None:
            await self._db[LOGIN_SESSIONS].insert_one(doc)
            return

        async with self._file_lock:
            items = self._read_json_file(LOGIN_SESSIONS)
            items.append(doc)
            self._write_json_file(LOGIN_SESSIONS, items)

    async def get_login_session(self, session_id: str) -> LoginSession | None:
        if self._db is not None:
            doc = await self._db[LOGIN_SESSIONS].find_one({"session_id": session_id}, _NO_ID)
            return LoginSession.model_validate(doc) if doc else None

        row = await self._find_file_row(
            LOGIN_SESSIONS, lambda item: item.get("session_id") == session_id
        )
        return LoginSession.model_validate(row) if row else None

    async def update_login_session_code(
        self, session_id: str, *, code: str, code_expires: float
    ) -> bool:
        changes = {"verification_code": code, "code_expires": code_expires}
        if self._db is not None:
            result = await self._db[LOGIN_SESSIONS].update_one(
                {"session_id": session_id}, {"$set": changes}
            )
            return result.matched_count > 0

        row = await self._update_file_row(
            LOGIN_SESSIONS, lambda item: item.get("session_id") == session_id, changes
        )
        return row is not None

    async def consume_login_session(self, session_id: str, code: str) -> LoginSession | None:
        """Delete the session only if it still carries ``code``; at most one caller wins."""
        if self._db is not None:
            doc = await self._db[LOGIN_SESSIONS].find_one_and_delete(
                {"session_id": session_id, "verification_code": code},
                projection=_NO_ID,
            )
            return LoginSession.model_validate(doc) if doc else None

        removed = await self._delete_file_rows(
            LOGIN_SESSIONS,
            lambda item: item.get("session_id") == session_id
            and item.get("verification_code") == code,
        )
        return LoginSession.model_validate(removed[0]) if removed else None

    async def delete_login_session(self, session_id: str) -> None:
        if self._db is not None:
            await self._db[LOGIN_SESSIONS].delete_one({"session_id": session_id})
            return
        await self._delete_file_rows(
            LOGIN_SESSIONS, lambda item: item.get("session_id") == session_id
        )

    # -- password reset sessions ----------------------------------------

    async def replace_reset_session(self, session: PasswordResetSession) -> None:
        """Store ``session`` as the only reset session of its user."""
        doc = session.model_dump()
        if self._db is not None:
            collection = self._db[RESET_SESSIONS]
            try:
                await collection.replace_one({"user_id": session.user_id}, doc, upsert=True)
            except DuplicateKeyError:
                # A concurrent request inserted first; replace its record instead.
                await collection.replace_one({"user_id": session.user_id}, doc)
            return

        async with self._file_lock:
            items = [
                row
                for row in self._read_json_file(RESET_SESSIONS)
                if row.get("user_id") != session.user_id
            ]
            items.append(doc)
            self._write_json_file(RESET_SESSIONS, items)

    async def get_reset_session(self, session_id: str) -> PasswordResetSession | None:
        if self._db is not None:
            doc = await self._db[RESET_SESSIONS].find_one({"session_id": session_id}, _NO_ID)
            return PasswordResetSession.model_validate(doc) if doc else None

        row = await self._find_file_row(
            RESET_SESSIONS, lambda item: item.get("session_id") == session_id
        )
        return PasswordResetSession.model_validate(row) if row else None

    async def update_reset_session_code(
        self, session_id: str, *, code: str, code_expires: float
    ) -> bool:
        changes = {"verification_code": code, "code_expires": code_expires}
        if self._db is not None:
            result = await self._db[RESET_SESSIONS].update_one(
                {"session_id": session_id}, {"$set": changes}
            )
            return result.matched_count > 0

        row = await self._update_file_row(
            RESET_SESSIONS, lambda item: item.get("session_id") == session_id, changes
        )
        return row is not None

    async def mark_reset_session_verified(self, session_id: str, code: str) -> bool:
        """Flip ``verified`` only while the session still carries ``code``."""
        if self._db is not None:
            result = await self._db[RESET_SESSIONS].update_one(
                {"session_id": session_id, "verification_code": code},
                {"$set": {"verified": True}},
            )
            return result.matched_count > 0

        row = await self._update_file_row(
            RESET_SESSIONS,
            lambda item: item.get("session_id") == session_id
            and item.get("verification_code") == code,
            {"verified": True},
        )
        return row is not None

    async def consume_reset_session(self, session_id: str) -> PasswordResetSession | None:
        """Delete a verified reset session; unverified sessions are left alone."""
        if self._db is not None:
            doc = await self._db[RESET_SESSIONS].find_one_and_delete(
                {"session_id": session_id, "verified": True}, projection=_NO_ID
            )
            return PasswordResetSession.model_validate(doc) if doc else None

        removed = await self._delete_file_rows(
            RESET_SESSIONS,
            lambda item: item.get("session_id") == session_id and item.get("verified") is True,
        )
        return PasswordResetSession.model_validate(removed[0]) if removed else None

    async def delete_reset_session(self, session_id: str) -> None:
        if self._db is not None:
            await self._db[RESET_SESSIONS].delete_one({"session_id": session_id})
            return
        await self._delete_file_rows(
            RESET_SESSIONS, lambda item: item.get("session_id") == session_id
        )

    # -- rate limits -----------------------------------------------------

    async def increment_rate_limit(
        self, key: str, *, max_attempts: int, now: float
    ) -> RateLimitRecord | None:
        """Count one more attempt in the live window if it still has budget."""
        if self._db is not None:
            doc = await self._db[RATE_LIMITS].find_one_and_update(
                {"key": key, "expires_at": {"$gt": now}, "count": {"$lt": max_attempts}},
                {"$inc": {"count": 1}},
                projection=_NO_ID,
                return_document=ReturnDocument.AFTER,
            )
            return RateLimitRecord.model_validate(doc) if doc else None

        async with self._file_lock:
            items = self._read_json_file(RATE_LIMITS)
            for row in items:
                if (
                    row.get("key") == key
                    and float(row.get("expires_at", 0)) > now
                    and int(row.get("count", 0)) < max_attempts
                ):
                    row["count"] = int(row.get("count", 0)) + 1
                    self._write_json_file(RATE_LIMITS, items)
                    return RateLimitRecord.model_validate(row)
        return None

    async def get_live_rate_limit(self, key: str, *, now: float) -> RateLimitRecord | None:
        if self._db is not None:
            doc = await self._db[RATE_LIMITS].find_one(
                {"key": key, "expires_at": {"$gt": now}}, _NO_ID
            )
            return RateLimitRecord.model_validate(doc) if doc else None

        row = await self._find_file_row(
            RATE_LIMITS,
            lambda item: item.get("key") == key and float(item.get("expires_at", 0)) > now,
        )
        return RateLimitRecord.model_validate(row) if row else None

    async def restart_rate_limit(self, record: RateLimitRecord) -> bool:
        """Reopen an expired window for ``record.key``; False when none is expired."""
        doc = record.model_dump()
        if self._db is not None:
            result = await self._db[RATE_LIMITS].update_one(
                {"key": record.key, "expires_at": {"$lte": record.created_at}},
                {"$set": doc},
            )
            return result.matched_count > 0

        row = await self._update_file_row(
            RATE_LIMITS,
            lambda item: item.get("key") == record.key
            and float(item.get("expires_at", 0)) <= record.created_at,
            doc,
        )
        return row is not None

    async def insert_rate_limit(self, record: RateLimitRecord) -> bool:
        """Open the first window for a key; False when another caller got there first."""
        doc = record.model_dump()
        if self._db is not None:
            try:
                await self._db[RATE_LIMITS].insert_one(doc)
            except DuplicateKeyError:
                return False
            return True

        async with self._file_lock:
            items = self._read_json_file(RATE_LIMITS)
            if any(row.get("key") == record.key for row in items):
                return False
            items.append(doc)
            self._write_json_file(RATE_LIMITS, items)
        return True

    async def delete_rate_limit(self, key: str) -> None:
        if self._db is not None:
            await self._db[RATE_LIMITS].delete_one({"key": key})
            return
        await self._delete_file_rows(RATE_LIMITS, lambda item: item.get("key") == key)

    # -- maintenance -----------------------------------------------------

    async def purge_expired(self, *, now: float) -> dict[str, int]:
        """Delete sessions and windows past ``expires_at``; returns counts per collection."""
        counts: dict[str, int] = {}
        for name in (LOGIN_SESSIONS, RESET_SESSIONS, RATE_LIMITS):
            if self._db is not None:
                result = await self._db[name].delete_many({"expires_at": {"$lte": now}})
                counts[name] = result.deleted_count
                continue
            removed = await self._delete_file_rows(
                name, lambda item: float(item.get("expires_at", 0)) <= now
            )
            counts[name] = len(removed)
        return counts
