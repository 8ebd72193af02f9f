"""Filesystem-backed entity store for client profiles and assessment sessions.

JSON files under the data root are the source of truth. This is the only
module that writes them; every mutation of an entity runs while holding that
entity's lock, and every write lands atomically (temp file + os.replace), so a
reader never sees a truncated record.
"""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path

from gapcheck import codec
from gapcheck.errors import CorruptRecordError, ValidationError
from gapcheck.locks import KeyedLocks
from gapcheck.models import Client, Session, parse_timestamp, utc_now
from gapcheck.paths import PathResolver

logger = logging.getLogger(__name__)

_DECODE_ERRORS = (KeyError, TypeError, ValueError, AttributeError, ValidationError)


@dataclass
class StorageStats:
    total_clients: int = 0
    total_sessions: int = 0
    corrupt_records: list[str] = field(default_factory=list)


def _recency_key(entity: Client | Session) -> tuple:
    return (parse_timestamp(entity.updated_at), parse_timestamp(entity.created_at), entity.id)


class EntityStore:
    """Save/load/list/delete for clients and sessions."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)
        self.paths = PathResolver(self.root)
        self.client_locks = KeyedLocks("client")
        self.session_locks = KeyedLocks("session")

    # ── 1. Raw file access ────────────────────────────────────

    def _write_atomic(self, path: Path, data: bytes) -> None:
        """Write to a temp file beside ``path`` then rename over it."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "wb", delete=False, dir=str(path.parent), prefix=f".{path.stem}.", suffix=".tmp"
        ) as tmp:
            tmp_name = tmp.name
            try:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            except BaseException:
                tmp.close()
                os.unlink(tmp_name)
                raise
        os.replace(tmp_name, path)

    def _read_bytes(self, path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None

    def _decode_client(self, path: Path) -> Client | None:
        data = self._read_bytes(path)
        if data is None:
            return None
        record = codec.decode(data, path)
        try:
            return codec.client_from_dict(record)
        except _DECODE_ERRORS as e:
            raise CorruptRecordError(path, str(e)) from e

    def _decode_session(self, path: Path) -> Session | None:
        data = self._read_bytes(path)
        if data is None:
            return None
        record = codec.decode(data, path)
        try:
            return codec.session_from_dict(record)
        except _DECODE_ERRORS as e:
            raise CorruptRecordError(path, str(e)) from e

    def _ensure_client_dirs(self, client_id: str) -> None:
        """Create the client directory skeleton. Idempotent."""
        for d in [
            self.paths.client_dir(client_id),
            self.paths.assessments_dir(client_id),
            self.paths.reports_dir(client_id),
        ]:
            d.mkdir(parents=True, exist_ok=True)

    # ── 2. Clients ────────────────────────────────────────────

    def _write_client(self, client: Client) -> Client:
        now = utc_now()
        stamped = replace(client, updated_at=now, created_at=client.created_at or now)
        self._ensure_client_dirs(client.id)
        self._write_atomic(
            self.paths.profile_path(client.id), codec.encode(codec.client_to_dict(stamped))
        )
        logger.debug("Saved client %s", client.id)
        return stamped

    def _list_clients(self) -> list[Client]:
        clients: list[Client] = []
        for client_id in self.paths.client_ids():
            try:
                client = self._decode_client(self.paths.profile_path(client_id))
            except CorruptRecordError as e:
                logger.warning("Skipping client %s: %s", client_id, e.reason)
                continue
            if client is not None:
                clients.append(client)
        return sorted(clients, key=_recency_key, reverse=True)

    def _remove_client_dir(self, client_id: str) -> None:
        try:
            shutil.rmtree(self.paths.client_dir(client_id))
        except FileNotFoundError:
            return
        logger.info("Deleted client %s", client_id)

    async def save_client(self, client: Client) -> Client:
        """Persist a client, stamping updatedAt (and createdAt on first save)."""
        async with self.client_locks.acquire(client.id):
            return await asyncio.to_thread(self._write_client, client)

    async def load_client(self, client_id: str) -> Client | None:
        return await asyncio.to_thread(self._decode_client, self.paths.profile_path(client_id))

    async def list_clients(self) -> list[Client]:
        """All readable clients, most recently updated first."""
        return await asyncio.to_thread(self._list_clients)

    async def update_client(
        self, client_id: str, mutate: Callable[[Client], Client]
    ) -> Client | None:
        """Serialized read-modify-write. Returns None when the client is absent."""
        async with self.client_locks.acquire(client_id):
            current = await asyncio.to_thread(
                self._decode_client, self.paths.profile_path(client_id)
            )
            if current is None:
                return None
            updated = mutate(current)
            if updated.id != client_id:
                raise ValidationError("Client id cannot be changed")
            return await asyncio.to_thread(self._write_client, updated)

    async def delete_client(self, client_id: str) -> None:
        """Remove the client directory. Missing clients are not an error.

        Sessions stored under the client go with it; callers delete them
        through ``delete_session`` first so their locks are honoured.
        """
        async with self.client_locks.acquire(client_id):
            await asyncio.to_thread(self._remove_client_dir, client_id)

    # ── 3. Sessions ───────────────────────────────────────────

    def _write_session(self, session: Session) -> Session:
        now = utc_now()
        stamped = replace(session, updated_at=now, created_at=session.created_at or now)
        path = self.paths.session_path(session.client_id, session.framework_id, session.id)
        self._write_atomic(path, codec.encode(codec.session_to_dict(stamped)))
        logger.debug("Saved session %s (%d responses)", session.id, len(session.responses))
        return stamped

    def _locate_session(self, session_id: str) -> tuple[Path, Session] | None:
        """Find a session by id alone. Cost grows with the number of clients."""
        for path in self.paths.session_candidates(session_id):
            session = self._decode_session(path)
            if session is not None and session.id == session_id:
                return path, session
        return None

    def _list_client_sessions(self, client_id: str) -> list[Session]:
        sessions: list[Session] = []
        for path in self.paths.session_files(client_id):
            try:
                session = self._decode_session(path)
            except CorruptRecordError as e:
                logger.warning("Skipping session file %s: %s", path.name, e.reason)
                continue
            if session is not None:
                sessions.append(session)
        return sorted(sessions, key=_recency_key, reverse=True)

    def _session_file_for_delete(self, session_id: str) -> Path | None:
        """Pick the file to remove without requiring every candidate to decode.

        A candidate whose stored id matches wins. Failing that, an undecodable
        file is taken only when it is the sole ``*_<sessionId>.json`` match.
        """
        candidates = list(self.paths.session_candidates(session_id))
        corrupt: list[Path] = []
        for path in candidates:
            try:
                session = self._decode_session(path)
            except CorruptRecordError as e:
                logger.warning("Session file %s is corrupt: %s", path.name, e.reason)
                corrupt.append(path)
                continue
            if session is not None and session.id == session_id:
                return path
        if len(candidates) == 1 and corrupt:
            return corrupt[0]
        return None

    def _remove_session(self, session_id: str) -> None:
        path = self._session_file_for_delete(session_id)
        if path is None:
            return
        try:
            path.unlink()
        except FileNotFoundError:
            return
        logger.info("Deleted session %s", session_id)

    async def save_session(self, session: Session) -> Session:
        async with self.session_locks.acquire(session.id):
            return await asyncio.to_thread(self._write_session, session)

    async def load_session(self, session_id: str) -> Session | None:
        located = await asyncio.to_thread(self._locate_session, session_id)
        return located[1] if located else None

    async def list_client_sessions(self, client_id: str) -> list[Session]:
        return await asyncio.to_thread(self._list_client_sessions, client_id)

    async def update_session(
        self, session_id: str, mutate: Callable[[Session], Session]
    ) -> Session | None:
        """Serialized read-modify-write. Returns None when the session is absent.

        Anything ``mutate`` raises aborts the write.
        """
        async with self.session_locks.acquire(session_id):
            located = await asyncio.to_thread(self._locate_session, session_id)
            if located is None:
                return None
            _, current = located
            updated = mutate(current)
            if (updated.id, updated.client_id, updated.framework_id) != (
                current.id,
                current.client_id,
                current.framework_id,
            ):
                raise ValidationError("Session id, clientId and frameworkId cannot be changed")
            return await asyncio.to_thread(self._write_session, updated)

    async def delete_session(self, session_id: str) -> None:
        """Remove a session record. Missing sessions are not an error."""
        async with self.session_locks.acquire(session_id):
            await asyncio.to_thread(self._remove_session, session_id)

    # ── 4. Maintenance ────────────────────────────────────────

    def _validate_data_integrity(self) -> list[str]:
        problems: list[str] = []
        if not self.paths.clients_dir.is_dir():
            return problems
        for client_id in self.paths.client_ids():
            profile = self.paths.profile_path(client_id)
            try:
                if self._decode_client(profile) is None:
                    problems.append(f"{client_id}: missing {profile.name}")
            except CorruptRecordError as e:
                problems.append(f"{client_id}: {e.reason}")
            for path in self.paths.session_files(client_id):
                try:
                    self._decode_session(path)
                except CorruptRecordError as e:
                    problems.append(f"{client_id}/{path.name}: {e.reason}")
        return problems

    def _storage_stats(self) -> StorageStats:
        stats = StorageStats()
        for client_id in self.paths.client_ids():
            try:
                if self._decode_client(self.paths.profile_path(client_id)) is None:
                    continue
            except CorruptRecordError:
                stats.corrupt_records.append(client_id)
                continue
            stats.total_clients += 1
            for path in self.paths.session_files(client_id):
                try:
                    self._decode_session(path)
                except CorruptRecordError:
                    stats.corrupt_records.append(f"{client_id}/{path.name}")
                    continue
                stats.total_sessions += 1
        return stats

    async def validate_data_integrity(self) -> list[str]:
        """Check every stored record. Returns a list of problems (empty when healthy)."""
        return await asyncio.to_thread(self._validate_data_integrity)

    async def storage_stats(self) -> StorageStats:
        return await asyncio.to_thread(self._storage_stats)
