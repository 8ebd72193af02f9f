"""Tests for the file-backed entity store."""

from __future__ import annotations

import asyncio
import itertools
import json
from dataclasses import replace

import pytest

from gapcheck.errors import ValidationError
from gapcheck.models import Answer, Client, Session
from gapcheck.store import EntityStore


def _session(session_id: str = "s1", client_id: str = "client-acme", framework_id: str = "cmmc-l1") -> Session:
    return Session(id=session_id, client_id=client_id, framework_id=framework_id)


@pytest.fixture
def ticking_clock(monkeypatch):
    """Strictly increasing timestamps so recency ordering is deterministic."""
    counter = itertools.count(1)
    monkeypatch.setattr(
        "gapcheck.store.utc_now", lambda: f"2026-01-01T00:00:{next(counter):02d}.000000Z"
    )


class TestClients:
    @pytest.mark.asyncio
    async def test_save_and_load(self, store: EntityStore, acme: Client):
        saved = await store.save_client(acme)
        assert saved.created_at and saved.updated_at

        loaded = await store.load_client(acme.id)
        assert loaded == saved
        assert store.paths.assessments_dir(acme.id).is_dir()
        assert store.paths.reports_dir(acme.id).is_dir()

    @pytest.mark.asyncio
    async def test_created_at_kept_on_resave(self, store: EntityStore, acme: Client, ticking_clock):
        first = await store.save_client(acme)
        second = await store.save_client(replace(first, industry="Aerospace"))
        assert second.created_at == first.created_at
        assert second.updated_at > first.updated_at

    @pytest.mark.asyncio
    async def test_load_missing(self, store: EntityStore):
        assert await store.load_client("nobody") is None

    @pytest.mark.asyncio
    async def test_list_most_recent_first(self, store: EntityStore, ticking_clock):
        for cid in ["c1", "c2", "c3"]:
            await store.save_client(Client(id=cid, company_name=cid.upper()))
        c1 = await store.load_client("c1")
        await store.save_client(c1)

        clients = await store.list_clients()
        assert [c.id for c in clients] == ["c1", "c3", "c2"]

    @pytest.mark.asyncio
    async def test_list_skips_corrupt_profiles(self, store: EntityStore, acme: Client):
        await store.save_client(acme)
        broken = store.paths.profile_path("broken")
        broken.parent.mkdir(parents=True)
        broken.write_text("{ truncated")

        clients = await store.list_clients()
        assert [c.id for c in clients] == [acme.id]

    @pytest.mark.asyncio
    async def test_list_ignores_unsafe_directory_names(self, store: EntityStore, acme: Client):
        await store.save_client(acme)
        (store.paths.clients_dir / "a..b").mkdir()

        assert [c.id for c in await store.list_clients()] == [acme.id]
        assert await store.validate_data_integrity() == []
        assert (await store.storage_stats()).total_clients == 1

    @pytest.mark.asyncio
    async def test_unknown_fields_survive_resave(self, store: EntityStore, acme: Client):
        await store.save_client(acme)
        path = store.paths.profile_path(acme.id)
        record = json.loads(path.read_text())
        record["crmId"] = "X-42"
        path.write_text(json.dumps(record))

        loaded = await store.load_client(acme.id)
        await store.save_client(replace(loaded, dba="Acme"))
        assert json.loads(path.read_text())["crmId"] == "X-42"

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, store: EntityStore, acme: Client):
        await store.save_client(acme)
        await store.delete_client(acme.id)
        await store.delete_client(acme.id)
        assert await store.load_client(acme.id) is None
        assert not store.paths.client_dir(acme.id).exists()

    @pytest.mark.asyncio
    async def test_update_client_rejects_id_change(self, store: EntityStore, acme: Client):
        await store.save_client(acme)
        with pytest.raises(ValidationError):
            await store.update_client(acme.id, lambda c: replace(c, id="other"))

    @pytest.mark.asyncio
    async def test_update_missing_client(self, store: EntityStore):
        assert await store.update_client("ghost", lambda c: c) is None

    @pytest.mark.asyncio
    async def test_no_temp_files_left(self, store: EntityStore, acme: Client):
        for _ in range(3):
            await store.save_client(acme)
        leftovers = [p.name for p in store.paths.client_dir(acme.id).iterdir() if p.is_file()]
        assert leftovers == ["profile.json"]


class TestSessions:
    @pytest.mark.asyncio
    async def test_save_and_find_by_id(self, store: EntityStore, acme: Client):
        await store.save_client(acme)
        saved = await store.save_session(_session())

        path = store.paths.session_path(acme.id, "cmmc-l1", "s1")
        assert path.is_file()
        assert await store.load_session("s1") == saved

    @pytest.mark.asyncio
    async def test_load_missing(self, store: EntityStore):
        assert await store.load_session("nothing") is None

    @pytest.mark.asyncio
    async def test_list_client_sessions(self, store: EntityStore, ticking_clock):
        await store.save_session(_session("s1"))
        await store.save_session(_session("s2", framework_id="nist_171"))
        await store.save_session(_session("s3", client_id="other"))

        sessions = await store.list_client_sessions("client-acme")
        assert [s.id for s in sessions] == ["s2", "s1"]

    @pytest.mark.asyncio
    async def test_corrupt_session_skipped_in_listing(self, store: EntityStore):
        await store.save_session(_session("s1"))
        bad = store.paths.session_path("client-acme", "cmmc-l1", "bad")
        bad.write_text(json.dumps({"id": "bad"}))

        sessions = await store.list_client_sessions("client-acme")
        assert [s.id for s in sessions] == ["s1"]

    @pytest.mark.asyncio
    async def test_update_session_serializes_writers(self, store: EntityStore):
        await store.save_session(_session())

        def add(question_id: str):
            def mutate(session: Session) -> Session:
                answer = Answer(kind="yes", timestamp="t", control_id=question_id, question_id=question_id)
                return replace(session, responses={**session.responses, question_id: answer})
            return mutate

        await asyncio.gather(*(store.update_session("s1", add(f"Q-{i}")) for i in range(10)))
        loaded = await store.load_session("s1")
        assert sorted(loaded.responses) == sorted(f"Q-{i}" for i in range(10))
        assert len(store.session_locks) == 0

    @pytest.mark.asyncio
    async def test_update_session_rejects_identity_change(self, store: EntityStore):
        await store.save_session(_session())
        with pytest.raises(ValidationError):
            await store.update_session("s1", lambda s: replace(s, framework_id="other"))

    @pytest.mark.asyncio
    async def test_mutate_error_aborts_write(self, store: EntityStore):
        saved = await store.save_session(_session())

        def boom(session: Session) -> Session:
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            await store.update_session("s1", boom)
        assert await store.load_session("s1") == saved

    @pytest.mark.asyncio
    async def test_delete_session(self, store: EntityStore):
        await store.save_session(_session())
        await store.delete_session("s1")
        await store.delete_session("s1")
        assert await store.load_session("s1") is None

    @pytest.mark.asyncio
    async def test_delete_corrupt_session(self, store: EntityStore):
        await store.save_session(_session())
        path = store.paths.session_path("client-acme", "cmmc-l1", "s1")
        path.write_text("{not json")

        await store.delete_session("s1")
        assert not path.exists()
        assert await store.load_session("s1") is None

    @pytest.mark.asyncio
    async def test_delete_picks_matching_record_among_suffix_matches(self, store: EntityStore):
        # "fw_x_s1.json" holds session "x_s1" but also ends in "_s1.json".
        other = await store.save_session(_session("x_s1", framework_id="fw"))
        await store.save_session(_session("s1"))
        broken = store.paths.session_path("client-acme", "zz", "s1")
        broken.write_text("[]")

        await store.delete_session("s1")
        assert not store.paths.session_path("client-acme", "cmmc-l1", "s1").exists()

        # Two suffix matches left, neither holds "s1": nothing is removed.
        await store.delete_session("s1")
        assert broken.exists()
        assert await store.load_session("x_s1") == other


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_healthy_store(self, store: EntityStore, acme: Client):
        await store.save_client(acme)
        await store.save_session(_session())

        assert await store.validate_data_integrity() == []
        stats = await store.storage_stats()
        assert (stats.total_clients, stats.total_sessions, stats.corrupt_records) == (1, 1, [])

    @pytest.mark.asyncio
    async def test_problems_reported(self, store: EntityStore, acme: Client):
        await store.save_client(acme)
        store.paths.session_path(acme.id, "cmmc-l1", "bad").write_text("[]")
        store.paths.assessments_dir("orphan").mkdir(parents=True)

        problems = await store.validate_data_integrity()
        assert len(problems) == 2
        assert any(p.startswith("orphan: missing profile.json") for p in problems)
        assert any("cmmc-l1_bad.json" in p for p in problems)

        stats = await store.storage_stats()
        assert stats.total_clients == 1
        assert stats.corrupt_records == [f"{acme.id}/cmmc-l1_bad.json"]

    @pytest.mark.asyncio
    async def test_empty_root(self, store: EntityStore):
        assert await store.validate_data_integrity() == []
        assert (await store.storage_stats()).total_clients == 0
