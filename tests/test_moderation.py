"""
Tests for ModerationManager

Covers member standing changes, suspension, post status transitions,
spam removal, thread flags and moderator seats.
"""

import pytest
from datetime import date, timedelta

from core.db_manager import DBManager
from core.error_handler import NotFoundError, PermissionDeniedError
from logic.moderation_manager import ModerationManager
from logic.thread_manager import ThreadManager
from models.database import CanViewType, ForumStatus, PostStatus


@pytest.fixture
def db_manager(tmp_path):
    """Create and initialize a DBManager instance."""
    db = DBManager(tmp_path / "test.db")
    db.initialize_database()
    return db


@pytest.fixture
def thread_manager(db_manager):
    return ThreadManager(db_manager)


@pytest.fixture
def moderation_manager(db_manager, thread_manager):
    """Create a ModerationManager instance."""
    return ModerationManager(db_manager, thread_manager)


@pytest.fixture
def holder(db_manager):
    return db_manager.create_holder("Forums", "forums")


@pytest.fixture
def moderator(db_manager):
    return db_manager.create_member("mod@example.com", nickname="mod")


@pytest.fixture
def forum(db_manager, holder, moderator):
    forum = db_manager.create_forum("General", "general", holder_id=holder.id)
    db_manager.add_forum_moderator(forum.id, moderator.id)
    return db_manager.get_forum(forum.id)


@pytest.fixture
def member(db_manager):
    return db_manager.create_member("member@example.com", nickname="member")


@pytest.fixture
def admin(db_manager):
    return db_manager.create_member("admin@example.com", nickname="admin", is_admin=True)


@pytest.fixture
def thread(thread_manager, forum, member):
    return thread_manager.create_thread(forum.id, "Topic", "Opening post", member)


class TestMemberStanding:
    """Test ban, ghost and restore."""

    def test_ban_member(self, moderation_manager, forum, member, moderator):
        banned = moderation_manager.ban_member(member.id, forum.id, moderator)

        assert banned.forum_status == ForumStatus.BANNED
        assert banned.is_banned() is True

    def test_ghost_and_restore(self, moderation_manager, forum, member, moderator):
        ghost = moderation_manager.ghost_member(member.id, forum.id, moderator)
        restored = moderation_manager.restore_member(member.id, forum.id, moderator)

        assert ghost.is_ghost() is True
        assert restored.forum_status == ForumStatus.NORMAL

    def test_non_moderator_refused(self, moderation_manager, db_manager, forum, member):
        other = db_manager.create_member("other@example.com", nickname="other")

        with pytest.raises(PermissionDeniedError):
            moderation_manager.ban_member(other.id, forum.id, member)

    def test_cannot_ban_self(self, moderation_manager, forum, moderator):
        with pytest.raises(PermissionDeniedError):
            moderation_manager.ban_member(moderator.id, forum.id, moderator)

    def test_moderator_cannot_ban_admin(self, moderation_manager, forum, moderator, admin):
        with pytest.raises(PermissionDeniedError):
            moderation_manager.ban_member(admin.id, forum.id, moderator)

    def test_missing_member(self, moderation_manager, forum, moderator):
        with pytest.raises(NotFoundError):
            moderation_manager.ban_member(999, forum.id, moderator)

    def test_hidden_forum_reported_as_missing(self, moderation_manager, db_manager, holder, member):
        hidden = db_manager.create_forum(
            "Staff", "staff", holder_id=holder.id,
            can_view_type=CanViewType.ONLY_THESE_USERS.value
        )
        other = db_manager.create_member("other@example.com", nickname="other")

        with pytest.raises(NotFoundError):
            moderation_manager.ban_member(other.id, hidden.id, member)


class TestSuspension:
    """Test admin-only suspension."""

    def test_suspend_and_lift(self, moderation_manager, member, admin):
        until = date.today() + timedelta(days=7)

        suspended = moderation_manager.suspend_member(member.id, until, admin)
        lifted = moderation_manager.suspend_member(member.id, None, admin)

        assert suspended.is_suspended() is True
        assert lifted.is_suspended() is False

    def test_moderator_cannot_suspend(self, moderation_manager, member, moderator):
        with pytest.raises(PermissionDeniedError):
            moderation_manager.suspend_member(member.id, date.today(), moderator)

    def test_suspend_missing_member(self, moderation_manager, admin):
        with pytest.raises(NotFoundError):
            moderation_manager.suspend_member(999, date.today(), admin)


class TestPostStatus:
    """Test post status transitions."""

    def test_approve_runs_observers(self, moderation_manager, thread_manager, thread, member, moderator):
        seen = []
        thread_manager.add_observer(lambda post: seen.append(post.id))
        pending = thread_manager.add_post(thread.id, "Pending", member, status=PostStatus.AWAITING.value)
        assert seen == []

        approved = moderation_manager.approve_post(pending.id, moderator)

        assert approved.status == PostStatus.MODERATED
        assert seen == [pending.id]

    def test_approve_requires_awaiting(self, moderation_manager, thread_manager, thread, moderator):
        first = thread_manager.first_post(thread.id)

        with pytest.raises(ValueError):
            moderation_manager.approve_post(first.id, moderator)

    def test_reject_and_archive(self, moderation_manager, thread_manager, thread, member, moderator):
        reply = thread_manager.add_post(thread.id, "Reply", member)

        assert moderation_manager.reject_post(reply.id, moderator).status == PostStatus.REJECTED
        assert moderation_manager.archive_post(reply.id, moderator).status == PostStatus.ARCHIVED

    def test_member_cannot_moderate_posts(self, moderation_manager, thread_manager, thread, member):
        first = thread_manager.first_post(thread.id)

        with pytest.raises(PermissionDeniedError):
            moderation_manager.reject_post(first.id, member)

    def test_missing_post(self, moderation_manager, moderator):
        with pytest.raises(NotFoundError):
            moderation_manager.archive_post(999, moderator)


class TestSpam:
    """Test spam removal."""

    def test_spam_reply_bans_author(self, moderation_manager, thread_manager, db_manager, thread, moderator):
        spammer = db_manager.create_member("spam@example.com", nickname="spammer")
        spam = thread_manager.add_post(thread.id, "Buy now", spammer)

        thread_removed = moderation_manager.mark_as_spam(spam.id, moderator)

        assert thread_removed is False
        assert db_manager.get_post(spam.id) is None
        assert db_manager.get_member(spammer.id).is_banned() is True
        assert db_manager.get_thread(thread.id) is not None

    def test_spam_first_post_removes_thread(self, moderation_manager, thread_manager, db_manager, thread, member, moderator):
        first = thread_manager.first_post(thread.id)

        assert moderation_manager.mark_as_spam(first.id, moderator) is True
        assert db_manager.get_thread(thread.id) is None

    def test_own_post_refused(self, moderation_manager, thread_manager, thread, moderator):
        own = thread_manager.add_post(thread.id, "Mine", moderator)

        with pytest.raises(PermissionDeniedError):
            moderation_manager.mark_as_spam(own.id, moderator)

    def test_admin_author_not_banned(self, moderation_manager, thread_manager, db_manager, thread, admin, moderator):
        post = thread_manager.add_post(thread.id, "Admin post", admin)

        moderation_manager.mark_as_spam(post.id, moderator)

        assert db_manager.get_member(admin.id).is_banned() is False


class TestThreadFlags:
    """Test sticky and read-only flags."""

    def test_set_flags(self, moderation_manager, thread, moderator):
        assert moderation_manager.set_sticky(thread.id, True, moderator).is_sticky is True
        assert moderation_manager.set_global_sticky(thread.id, True, moderator).is_global_sticky is True
        assert moderation_manager.set_read_only(thread.id, True, moderator).is_read_only is True
        assert moderation_manager.set_read_only(thread.id, False, moderator).is_read_only is False

    def test_member_cannot_set_flags(self, moderation_manager, thread, member):
        with pytest.raises(PermissionDeniedError):
            moderation_manager.set_sticky(thread.id, True, member)

    def test_missing_thread(self, moderation_manager, moderator):
        with pytest.raises(NotFoundError):
            moderation_manager.set_read_only(999, True, moderator)


class TestModeratorSeats:
    """Test granting and revoking moderator seats."""

    def test_add_and_remove(self, moderation_manager, forum, member, admin):
        added = moderation_manager.add_moderator(forum.id, member.id, admin)
        assert member.id in added.moderator_ids()

        removed = moderation_manager.remove_moderator(forum.id, member.id, admin)
        assert member.id not in removed.moderator_ids()

    def test_designated_moderator(self, moderation_manager, forum, member, admin):
        updated = moderation_manager.set_designated_moderator(forum.id, member.id, admin)

        assert updated.moderator_id == member.id

    def test_only_admins(self, moderation_manager, forum, member, moderator):
        with pytest.raises(PermissionDeniedError):
            moderation_manager.add_moderator(forum.id, member.id, moderator)
