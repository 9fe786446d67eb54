"""
tests/test_store_contract.py — Behaviour Shared by Both Backends
================================================================

Every test here runs twice, once per store, through the public
:class:`BoardService`.  A caller must not be able to tell which backend
serviced a call.
"""

from __future__ import annotations

import pytest

from conftest import register, run_async
from qaboard.constants import ANONYMOUS_AUTHOR, ANSWER_XP, QUESTION_XP
from qaboard.exceptions import NotFoundError, PermissionDeniedError, ValidationError
from qaboard.models import QuestionStatus, Reactions, Role
from qaboard.services.board_service import display_author


# ---------------------------------------------------------------------------
# Identity & session
# ---------------------------------------------------------------------------
class TestIdentity:
    def test_register_signs_in(self, service):
        session = register(service, "Ana", Role.STUDENT)
        assert session.user.name == "Ana"
        assert session.role is Role.STUDENT
        current = run_async(service.get_current_session())
        assert current is not None
        assert current.user_id == session.user_id

    def test_role_string_is_coerced(self, service):
        assert register(service, "Tomo", "ta").role is Role.TA

    def test_unknown_role_rejected(self, service):
        with pytest.raises(ValidationError):
            register(service, "Zed", "dean")

    def test_duplicate_email_rejected(self, service):
        register(service, "Ana")
        with pytest.raises(ValidationError):
            run_async(service.register_user("Other", Role.STUDENT, "ANA@example.com", "pw"))

    def test_login_and_bad_credentials(self, service):
        created = register(service, "Ana")
        session = run_async(service.login_user("ana@example.com", "pw-Ana"))
        assert session is not None
        assert session.user_id == created.user_id
        assert run_async(service.login_user("ana@example.com", "wrong")) is None
        assert run_async(service.login_user("nobody@example.com", "pw")) is None

    def test_logout_clears_current_session(self, service):
        session = register(service, "Ana")
        run_async(service.logout_user(session))
        assert run_async(service.get_current_session()) is None

    def test_update_display_name_and_avatar(self, service):
        session = register(service, "Ana")
        renamed = run_async(service.update_display_name(session, "Ana M."))
        assert renamed.name == "Ana M."

        with_avatar = run_async(service.update_avatar(session, "https://img.example/a.png"))
        assert with_avatar.avatar_url == "https://img.example/a.png"
        assert with_avatar.name == "Ana M."

        cleared = run_async(service.update_avatar(session, None))
        assert cleared.avatar_url is None

    def test_rename_leaves_avatar_untouched(self, service):
        session = register(service, "Ana")
        run_async(service.update_avatar(session, "https://img.example/a.png"))
        renamed = run_async(service.update_display_name(session, "Ana M."))
        assert renamed.avatar_url == "https://img.example/a.png"


# ---------------------------------------------------------------------------
# Rooms
# ---------------------------------------------------------------------------
class TestRooms:
    def test_teacher_creates_room_and_is_member(self, service, teacher, room):
        assert len(room.code) == 6
        assert room.name == "Algorithms"
        assert room.channel == "#algo"
        joined = run_async(service.list_joined_rooms(teacher))
        assert [r.id for r in joined] == [room.id]

    def test_student_cannot_create_room(self, service, student_a):
        with pytest.raises(PermissionDeniedError):
            run_async(service.create_room(student_a, "Mine"))

    def test_join_by_lowercase_code(self, service, room, student_a):
        joined = run_async(service.join_room(student_a, room.code.lower()))
        assert joined is not None
        assert joined.id == room.id
        assert [r.id for r in run_async(service.list_joined_rooms(student_a))] == [room.id]

    def test_join_by_invite_url(self, service, room, student_a):
        url = f"https://board.example/join?room={room.code}"
        assert run_async(service.join_room(student_a, url)).id == room.id

    def test_join_twice_is_one_membership(self, service, room, student_a):
        run_async(service.join_room(student_a, room.code))
        run_async(service.join_room(student_a, room.code))
        assert len(run_async(service.list_joined_rooms(student_a))) == 1

    def test_unknown_code(self, service, student_a):
        assert run_async(service.join_room(student_a, "ZZZZZZ")) is None
        assert run_async(service.join_room(student_a, "   ")) is None

    def test_joined_rooms_newest_first(self, service, teacher):
        first = run_async(service.create_room(teacher, "First"))
        second = run_async(service.create_room(teacher, "Second"))
        rooms = run_async(service.list_joined_rooms(teacher))
        assert [r.id for r in rooms] == [second.id, first.id]

    def test_ta_key_gates_tas_only(self, service, teacher, student_a):
        gated = run_async(service.create_room(teacher, "Lab", ta_key="s3cret"))
        ta = register(service, "Tomo", Role.TA)

        with pytest.raises(PermissionDeniedError):
            run_async(service.join_room(ta, gated.code))
        with pytest.raises(PermissionDeniedError):
            run_async(service.join_room(ta, gated.code, ta_key="wrong"))
        assert run_async(service.list_joined_rooms(ta)) == []

        assert run_async(service.join_room(ta, gated.code, ta_key="s3cret")).id == gated.id
        assert run_async(service.join_room(student_a, gated.code)).id == gated.id


# ---------------------------------------------------------------------------
# Questions, answers, reactions
# ---------------------------------------------------------------------------
class TestQuestionFlow:
    def test_classroom_scenario(self, service, teacher, student_a, student_b):
        room = run_async(service.create_room(teacher, "Algorithms"))
        assert len(room.code) == 6
        assert room.code == room.code.upper()

        assert run_async(service.join_room(student_a, room.code)).id == room.id
        assert [r.id for r in run_async(service.list_joined_rooms(student_a))] == [room.id]

        question = run_async(
            service.create_question(student_a, room.id, "why is this O(n log n)?", anonymous=True)
        )
        assert question.anonymous is True
        assert display_author(question) == ANONYMOUS_AUTHOR
        assert question.status is QuestionStatus.OPEN
        assert question.reactions == Reactions(like=0, thanks=0)

        resolved = run_async(service.mark_answered(teacher, question.id))
        assert resolved.status is QuestionStatus.RESOLVED
        reopened = run_async(service.reopen(student_a, question.id))
        assert reopened.status is QuestionStatus.OPEN

        liked = run_async(service.add_question_reaction(student_b, question.id, "like"))
        assert liked.reactions.like == 1
        unliked = run_async(service.add_question_reaction(student_b, question.id, "like"))
        assert unliked.reactions.like == 0

    def test_author_override(self, service, room, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q", author="A. Sato"))
        assert question.author == "A. Sato"
        assert question.owner_id == student_a.user_id

    def test_room_question_reaction_scenario(self, service, room, student_a, student_b):
        run_async(service.join_room(student_a, room.code))
        run_async(service.join_room(student_b, room.code))

        question = run_async(service.create_question(student_a, room.id, "Why O(log n)?"))
        assert question.status is QuestionStatus.OPEN
        assert question.author == "Aiko"
        assert question.owner_id == student_a.user_id

        after_a = run_async(service.add_question_reaction(student_a, question.id, "like"))
        assert after_a.reactions == Reactions(like=1, thanks=0)
        after_b = run_async(service.add_question_reaction(student_b, question.id, "like"))
        assert after_b.reactions.like == 2
        after_thanks = run_async(service.add_question_reaction(student_b, question.id, "thanks"))
        assert after_thanks.reactions == Reactions(like=2, thanks=1)

        listed = run_async(service.list_questions(student_b, room.id))
        assert [q.id for q in listed] == [question.id]
        assert listed[0].reactions == Reactions(like=2, thanks=1)

    def test_toggle_is_an_involution(self, service, room, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        run_async(service.add_question_reaction(student_a, question.id, "like"))
        restored = run_async(service.add_question_reaction(student_a, question.id, "like"))
        assert restored.reactions == Reactions()

    def test_answer_reactions_count_distinct_users(self, service, room, teacher, student_a, student_b):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        answer = run_async(service.create_answer(teacher, question.id, "Because."))
        assert answer.role is Role.TEACHER

        run_async(service.add_answer_reaction(student_a, answer.id, "thanks"))
        updated = run_async(service.add_answer_reaction(student_b, answer.id, "thanks"))
        assert updated.reactions == Reactions(like=0, thanks=2)

        again = run_async(service.add_answer_reaction(student_b, answer.id, "thanks"))
        assert again.reactions.thanks == 1

    def test_invalid_reaction_type(self, service, room, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        with pytest.raises(ValidationError):
            run_async(service.add_question_reaction(student_a, question.id, "love"))

    def test_questions_newest_first_answers_oldest_first(self, service, room, teacher, student_a):
        ids = [
            run_async(service.create_question(student_a, room.id, f"Q{i}")).id for i in range(3)
        ]
        listed = run_async(service.list_questions(teacher, room.id))
        assert [q.id for q in listed] == list(reversed(ids))

        answer_ids = [
            run_async(service.create_answer(teacher, ids[0], f"A{i}")).id for i in range(3)
        ]
        question = run_async(service.get_question(teacher, ids[0]))
        assert [a.id for a in question.answers] == answer_ids

    def test_questions_scoped_to_room(self, service, teacher, room, student_a):
        other = run_async(service.create_room(teacher, "Other"))
        run_async(service.create_question(student_a, room.id, "Here"))
        assert run_async(service.list_questions(student_a, other.id)) == []

    def test_anonymous_question_hides_author(self, service, room, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q", anonymous=True))
        assert question.anonymous is True
        assert question.author is None
        assert question.owner_id == student_a.user_id
        assert display_author(question) == ANONYMOUS_AUTHOR

    def test_delete_cascades_answers_and_reactions(
        self, service, store, room, teacher, student_a
    ):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        answer = run_async(service.create_answer(teacher, question.id, "A"))
        run_async(service.add_question_reaction(teacher, question.id, "like"))
        run_async(service.add_answer_reaction(student_a, answer.id, "thanks"))

        assert run_async(service.delete_question(student_a, question.id)) is True
        assert run_async(service.get_question(teacher, question.id)) is None
        assert run_async(store.get_answer(teacher, answer.id)) is None
        assert run_async(service.add_answer_reaction(student_a, answer.id, "like")) is None
        assert run_async(service.list_questions(teacher, room.id)) == []

    def test_delete_answer_only(self, service, room, teacher, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        answer = run_async(service.create_answer(teacher, question.id, "A"))
        assert run_async(service.delete_answer(teacher, answer.id)) is True
        assert run_async(service.get_question(student_a, question.id)).answers == []

    def test_edit_answer(self, service, room, teacher, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        answer = run_async(service.create_answer(student_a, question.id, "draft"))
        edited = run_async(service.update_answer(student_a, answer.id, "final"))
        assert edited.text == "final"
        assert edited.id == answer.id


class TestMissingEntities:
    def test_reads_and_writes_on_missing_ids(self, service, room, teacher):
        assert run_async(service.get_question(teacher, "missing")) is None
        assert run_async(service.update_question_status(teacher, "missing", "resolved")) is None
        assert run_async(service.mark_answered(teacher, "missing")) is None
        assert run_async(service.delete_question(teacher, "missing")) is False
        assert run_async(service.add_question_reaction(teacher, "missing", "like")) is None
        assert run_async(service.update_answer(teacher, "missing", "x")) is None
        assert run_async(service.delete_answer(teacher, "missing")) is False
        assert run_async(service.add_answer_reaction(teacher, "missing", "like")) is None

    def test_answer_to_missing_question(self, service, room, teacher):
        with pytest.raises(NotFoundError):
            run_async(service.create_answer(teacher, "missing", "A"))

    def test_question_in_missing_room(self, service, student_a):
        with pytest.raises(NotFoundError):
            run_async(service.create_question(student_a, "missing", "Q"))

    def test_second_delete_returns_false(self, service, room, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        assert run_async(service.delete_question(student_a, question.id)) is True
        assert run_async(service.delete_question(student_a, question.id)) is False


# ---------------------------------------------------------------------------
# Authorization & status transitions
# ---------------------------------------------------------------------------
class TestAuthorization:
    def test_other_student_cannot_change_status(self, service, room, student_a, student_b):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        with pytest.raises(PermissionDeniedError):
            run_async(service.update_question_status(student_b, question.id, "resolved"))
        unchanged = run_async(service.get_question(student_a, question.id))
        assert unchanged.status is QuestionStatus.OPEN

    def test_other_student_cannot_delete_or_edit(self, service, room, student_a, student_b):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        answer = run_async(service.create_answer(student_a, question.id, "mine"))

        with pytest.raises(PermissionDeniedError):
            run_async(service.delete_question(student_b, question.id))
        with pytest.raises(PermissionDeniedError):
            run_async(service.update_answer(student_b, answer.id, "hijacked"))
        with pytest.raises(PermissionDeniedError):
            run_async(service.delete_answer(student_b, answer.id))

        kept = run_async(service.get_question(student_a, question.id))
        assert kept is not None
        assert [a.text for a in kept.answers] == ["mine"]

    @pytest.mark.parametrize("staff_role", [Role.TEACHER, Role.TA])
    def test_staff_may_moderate_any_post(self, service, room, student_a, staff_role):
        staff = register(service, "Staff", staff_role)
        question = run_async(service.create_question(student_a, room.id, "Q"))
        answer = run_async(service.create_answer(student_a, question.id, "A"))

        resolved = run_async(service.update_question_status(staff, question.id, "resolved"))
        assert resolved.status is QuestionStatus.RESOLVED
        assert run_async(service.update_answer(staff, answer.id, "edited")).text == "edited"
        assert run_async(service.delete_answer(staff, answer.id)) is True
        assert run_async(service.delete_question(staff, question.id)) is True

    def test_status_is_never_terminal(self, service, room, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        assert run_async(service.mark_understood(student_a, question.id)).status is QuestionStatus.RESOLVED
        assert run_async(service.reopen(student_a, question.id)).status is QuestionStatus.OPEN
        assert run_async(service.mark_understood(student_a, question.id)).status is QuestionStatus.RESOLVED

    def test_mark_understood_is_owner_only(self, service, room, teacher, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        with pytest.raises(PermissionDeniedError):
            run_async(service.mark_understood(teacher, question.id))

    def test_mark_answered_is_staff_only(self, service, room, teacher, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        with pytest.raises(PermissionDeniedError):
            run_async(service.mark_answered(student_a, question.id))
        assert run_async(service.mark_answered(teacher, question.id)).status is QuestionStatus.RESOLVED

    def test_invalid_status_rejected(self, service, room, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        with pytest.raises(ValidationError):
            run_async(service.update_question_status(student_a, question.id, "closed"))


# ---------------------------------------------------------------------------
# XP
# ---------------------------------------------------------------------------
class TestExperience:
    def test_new_user_profile(self, service, student_a):
        profile = run_async(service.get_profile(student_a))
        assert (profile.xp, profile.level, profile.avatar_stage) == (0, 1, 0)

    def test_posting_grants_and_deleting_deducts(self, service, room, teacher, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        assert question.xp_awarded == QUESTION_XP
        assert run_async(service.get_profile(student_a)).xp == QUESTION_XP

        answer = run_async(service.create_answer(student_a, question.id, "self-answer"))
        assert run_async(service.get_profile(student_a)).xp == QUESTION_XP + ANSWER_XP

        run_async(service.delete_answer(student_a, answer.id))
        assert run_async(service.get_profile(student_a)).xp == QUESTION_XP

        run_async(service.delete_question(student_a, question.id))
        assert run_async(service.get_profile(student_a)).xp == 0

    def test_moderator_delete_keeps_author_xp(self, service, room, teacher, student_a):
        question = run_async(service.create_question(student_a, room.id, "Q"))
        run_async(service.delete_question(teacher, question.id))
        assert run_async(service.get_profile(student_a)).xp == QUESTION_XP
        assert run_async(service.get_profile(teacher)).xp == 0

    def test_xp_clamps_at_zero(self, service, student_a):
        run_async(service.add_xp(student_a, 30))
        profile = run_async(service.add_xp(student_a, -100))
        assert profile.xp == 0
        assert profile.level == 1

    def test_level_and_stage_follow_xp(self, service, student_a):
        profile = run_async(service.add_xp(student_a, 650))
        assert profile.level == 7
        assert profile.avatar_stage == 2
        stored = run_async(service.get_profile(student_a))
        assert (stored.xp, stored.level, stored.avatar_stage) == (650, 7, 2)
