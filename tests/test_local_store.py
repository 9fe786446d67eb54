"""
tests/test_local_store.py — Local JSON Document Store
======================================================

Persistence, tolerant loading of damaged or older documents, storage
failures, and serialization of concurrent writers.
"""

from __future__ import annotations

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from conftest import run_async
from qaboard.constants import STORAGE_KEY
from qaboard.exceptions import PermissionDeniedError, TransientBackendError
from qaboard.models import Reactions, Role
from qaboard.services.board_service import BoardService
from qaboard.store import local as local_module
from qaboard.store.blob import FileBlobStorage, MemoryBlobStorage
from qaboard.store.local import LocalStore, empty_document, normalize_document


def _signed_up(store: LocalStore, name: str, role: Role = Role.STUDENT):
    return run_async(store.sign_up(name, role, f"{name.lower()}@example.com", "pw"))


# ---------------------------------------------------------------------------
# Document shape
# ---------------------------------------------------------------------------
class TestNormalizeDocument:
    def test_non_dict_is_empty(self):
        assert normalize_document(["nope"]) == empty_document()

    def test_each_collection_defaulted_independently(self):
        doc = normalize_document({"rooms": [{"id": "r1"}], "questions": "broken"})
        assert doc["rooms"] == [{"id": "r1"}]
        assert doc["questions"] == []
        assert doc["questionReactions"] == []
        assert doc["profiles"] == {}
        assert doc["currentUserId"] is None

    def test_non_dict_entries_dropped(self):
        doc = normalize_document({"users": [{"id": "u1"}, None, "x"]})
        assert doc["users"] == [{"id": "u1"}]

    def test_legacy_profile_adopted_by_signed_in_user(self):
        doc = normalize_document({"currentUserId": "u1", "profile": {"xp": 40}})
        assert doc["profiles"] == {"u1": {"xp": 40}}

    def test_legacy_profile_ignored_without_user(self):
        assert normalize_document({"profile": {"xp": 40}})["profiles"] == {}


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------
class TestPersistence:
    def test_first_run_has_no_session(self):
        store = LocalStore(MemoryBlobStorage())
        assert run_async(store.current_session()) is None

    def test_state_survives_a_new_instance(self, tmp_path):
        service = BoardService(LocalStore(FileBlobStorage(tmp_path)))
        teacher = run_async(service.register_user("Tanaka", "teacher", "t@example.com", "pw"))
        room = run_async(service.create_room(teacher, "Algorithms"))
        question = run_async(service.create_question(teacher, room.id, "Persist?"))
        run_async(service.add_question_reaction(teacher, question.id, "like"))

        reopened = BoardService(LocalStore(FileBlobStorage(tmp_path)))
        session = run_async(reopened.get_current_session())
        assert session is not None
        assert session.user_id == teacher.user_id

        listed = run_async(reopened.list_questions(session, room.id))
        assert [q.text for q in listed] == ["Persist?"]
        assert listed[0].reactions == Reactions(like=1, thanks=0)
        assert run_async(reopened.get_profile(session)).xp == 12

    def test_document_written_under_storage_key(self, tmp_path):
        store = LocalStore(FileBlobStorage(tmp_path))
        _signed_up(store, "Ana")
        raw = json.loads((tmp_path / f"{STORAGE_KEY}.json").read_text(encoding="utf-8"))
        assert raw["users"][0]["name"] == "Ana"
        assert raw["users"][0]["passwordHash"] != "pw"

    def test_corrupt_document_resets_to_defaults(self, caplog):
        storage = MemoryBlobStorage()
        storage.set_item(STORAGE_KEY, "{not json")
        store = LocalStore(storage)

        with caplog.at_level("WARNING", logger="qaboard.store.local"):
            assert store.load_document() == empty_document()
        assert "corrupt" in caplog.text

        # The next write replaces the corrupt blob with a valid document.
        _signed_up(store, "Ana")
        assert json.loads(storage.get_item(STORAGE_KEY))["users"][0]["name"] == "Ana"

    def test_partial_document_keeps_what_it_has(self):
        storage = MemoryBlobStorage()
        storage.set_item(
            STORAGE_KEY,
            json.dumps({"rooms": [{"id": "r1", "code": "ABC123", "name": "Old room"}]}),
        )
        store = LocalStore(storage)
        session = _signed_up(store, "Ana")
        room = run_async(store.find_room_by_code(session, "ABC123"))
        assert room is not None
        assert room.name == "Old room"
        assert run_async(store.list_questions(session, "r1")) == []

    def test_cached_counters_are_not_trusted(self):
        storage = MemoryBlobStorage()
        storage.set_item(
            STORAGE_KEY,
            json.dumps(
                {
                    "rooms": [{"id": "r1", "code": "ABC123", "name": "Old"}],
                    "questions": [
                        {"id": "q1", "roomId": "r1", "text": "Q", "reactions": {"like": 9}}
                    ],
                }
            ),
        )
        store = LocalStore(storage)
        session = _signed_up(store, "Ana")
        assert run_async(store.get_question(session, "q1")).reactions == Reactions()


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------
class TestFailures:
    def test_storage_error_becomes_transient(self):
        storage = MagicMock(spec=MemoryBlobStorage)
        storage.get_item.side_effect = OSError("disk gone")
        store = LocalStore(storage)
        with pytest.raises(TransientBackendError) as excinfo:
            run_async(store.current_session())
        assert excinfo.value.details == {"key": STORAGE_KEY}

    def test_permission_denied_is_not_converted(self):
        store = LocalStore(MemoryBlobStorage())
        student = _signed_up(store, "Ana")
        with pytest.raises(PermissionDeniedError):
            run_async(store.create_room(student, "Nope"))

    def test_unknown_session_user_denied(self):
        store = LocalStore(MemoryBlobStorage())
        stranger = _signed_up(LocalStore(MemoryBlobStorage()), "Ghost")
        with pytest.raises(PermissionDeniedError):
            run_async(store.add_xp(stranger, 10))


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------
class TestConcurrency:
    def test_concurrent_toggles_by_distinct_users_all_land(self):
        store = LocalStore(MemoryBlobStorage())
        service = BoardService(store)
        teacher = run_async(service.register_user("T", "teacher", "t@example.com", "pw"))
        room = run_async(service.create_room(teacher, "Room"))
        question = run_async(service.create_question(teacher, room.id, "Q"))
        students = [_signed_up(store, f"S{i}") for i in range(8)]

        async def _all():
            await asyncio.gather(
                *(service.add_question_reaction(s, question.id, "like") for s in students)
            )
            return await service.get_question(teacher, question.id)

        assert run_async(_all()).reactions.like == 8

    def test_concurrent_xp_grants_are_not_lost(self):
        store = LocalStore(MemoryBlobStorage())
        session = _signed_up(store, "Ana")

        async def _all():
            await asyncio.gather(*(store.add_xp(session, 12) for _ in range(10)))
            return await store.get_profile(session)

        assert run_async(_all()).xp == 120

    def test_instances_on_one_directory_share_a_lock(self, tmp_path):
        first = LocalStore(FileBlobStorage(tmp_path))
        second = LocalStore(FileBlobStorage(tmp_path))
        assert first._lock is second._lock
        assert LocalStore(MemoryBlobStorage())._lock is not first._lock

    def test_memory_lock_lives_on_the_storage(self):
        storage = MemoryBlobStorage()
        before = len(local_module._FILE_LOCKS)
        first = LocalStore(storage)
        second = LocalStore(storage)
        assert first._lock is second._lock
        assert first._lock is storage.document_lock(STORAGE_KEY)
        assert LocalStore(storage, key="other")._lock is not first._lock
        assert len(local_module._FILE_LOCKS) == before
