"""
Tests for ForumManager

Covers forum structure, viewer-filtered listings, sticky topics,
statistics, recent and popular content.
"""

import pytest
from datetime import datetime, timedelta

from core.db_manager import DBManager
from core.error_handler import NotFoundError, PermissionDeniedError
from logic.forum_manager import ForumManager
from logic.thread_manager import ThreadManager
from models.database import CanPostType, CanViewType, ForumStatus, PostStatus


@pytest.fixture
def db_manager(tmp_path):
    """Create and initialize a DBManager instance."""
    db = DBManager(tmp_path / "test.db")
    db.initialize_database()
    return db


@pytest.fixture
def forum_manager(db_manager):
    """Create a ForumManager instance."""
    return ForumManager(db_manager, recent_posts_limit=50, popular_threads_limit=20)


@pytest.fixture
def thread_manager(db_manager):
    return ThreadManager(db_manager)


@pytest.fixture
def admin(db_manager):
    return db_manager.create_member("admin@example.com", nickname="admin", is_admin=True)


@pytest.fixture
def member(db_manager):
    return db_manager.create_member("member@example.com", nickname="member")


@pytest.fixture
def holder(forum_manager, admin):
    return forum_manager.create_holder("Forums", "forums", admin)


@pytest.fixture
def public_forum(forum_manager, holder, admin):
    return forum_manager.create_forum("General", "general", admin, holder_id=holder.id)


@pytest.fixture
def members_forum(forum_manager, holder, admin):
    return forum_manager.create_forum(
        "Members", "members", admin, holder_id=holder.id,
        can_view_type=CanViewType.LOGGED_IN_USERS.value
    )


class TestStructure:
    """Test creating holders, categories and forums."""

    def test_create_holder_requires_admin(self, forum_manager, member):
        with pytest.raises(PermissionDeniedError):
            forum_manager.create_holder("Forums", "forums", member)

    def test_holder_rejects_inherit(self, forum_manager, admin):
        with pytest.raises(ValueError):
            forum_manager.create_holder("Forums", "forums", admin, can_post_type=CanPostType.INHERIT.value)

    def test_create_forum(self, forum_manager, public_forum, holder):
        assert public_forum.holder_id == holder.id
        assert public_forum.can_post_type == CanPostType.INHERIT
        assert public_forum.link() == "forums/general/"

    def test_create_forum_validation(self, forum_manager, admin, holder):
        with pytest.raises(ValueError):
            forum_manager.create_forum("", "empty", admin, holder_id=holder.id)
        with pytest.raises(ValueError):
            forum_manager.create_forum("Bad", "a/b", admin, holder_id=holder.id)
        with pytest.raises(ValueError):
            forum_manager.create_forum("Bad", "bad", admin, holder_id=holder.id, can_post_type="Everybody")
        with pytest.raises(NotFoundError):
            forum_manager.create_forum("Lost", "lost", admin, holder_id=999)

    def test_create_category_order_range(self, forum_manager, holder, admin):
        with pytest.raises(ValueError):
            forum_manager.create_category(holder.id, "Zero", admin, stackable_order=0)
        with pytest.raises(ValueError):
            forum_manager.create_category(holder.id, "Too high", admin, stackable_order=100)

    def test_get_forum_hidden(self, forum_manager, members_forum, member):
        assert forum_manager.get_forum(members_forum.id, None) is None
        assert forum_manager.get_forum(members_forum.id, member).id == members_forum.id


class TestForumListings:
    """Test which forums a viewer sees."""

    def test_forums_for_holder_filters_hidden(self, forum_manager, holder, public_forum, members_forum, member):
        anonymous = [f.id for f in forum_manager.forums_for_holder(holder.id, None)]
        logged_in = [f.id for f in forum_manager.forums_for_holder(holder.id, member)]

        assert anonymous == [public_forum.id]
        assert logged_in == [public_forum.id, members_forum.id]

    def test_forums_grouped_by_category(self, forum_manager, db_manager, admin):
        holder = forum_manager.create_holder("Site", "site", admin, show_in_categories=True)
        low = forum_manager.create_category(holder.id, "Low", admin, stackable_order=1)
        high = forum_manager.create_category(holder.id, "High", admin, stackable_order=50)
        empty = forum_manager.create_category(holder.id, "Empty", admin, stackable_order=99)
        a = forum_manager.create_forum("A", "a", admin, holder_id=holder.id, category_id=low.id)
        b = forum_manager.create_forum("B", "b", admin, holder_id=holder.id, category_id=high.id)

        grouped = forum_manager.forums_by_category(holder.id, None)
        flat = forum_manager.forums_for_holder(holder.id, None)

        assert [(c.id, [f.id for f in forums]) for c, forums in grouped] == [(high.id, [b.id]), (low.id, [a.id])]
        assert empty.id not in [c.id for c, _ in grouped]
        assert [f.id for f in flat] == [b.id, a.id]


class TestTopics:
    """Test topic listings."""

    def test_topics_order(self, forum_manager, thread_manager, public_forum, member):
        older = thread_manager.create_thread(public_forum.id, "Older", "one", member)
        newer = thread_manager.create_thread(public_forum.id, "Newer", "two", member)
        thread_manager.add_post(older.id, "bump", member)

        topics = forum_manager.get_topics(public_forum.id, None)

        assert [t.id for t in topics] == [older.id, newer.id]

    def test_awaiting_topics_for_moderators(self, forum_manager, thread_manager, public_forum, member, admin):
        pending = thread_manager.create_thread(
            public_forum.id, "Pending", "wait", member, status=PostStatus.AWAITING.value
        )

        assert pending.id not in [t.id for t in forum_manager.get_topics(public_forum.id, member)]
        assert pending.id in [t.id for t in forum_manager.get_topics(public_forum.id, admin)]

    def test_topics_of_hidden_forum(self, forum_manager, thread_manager, members_forum, member):
        thread_manager.create_thread(members_forum.id, "Secret", "shh", member)

        assert forum_manager.get_topics(members_forum.id, None) == []

    def test_paging(self, forum_manager, thread_manager, public_forum, member):
        threads = [thread_manager.create_thread(public_forum.id, f"T{i}", "x", member) for i in range(5)]

        page = forum_manager.get_topics(public_forum.id, None, start=2, limit=2)

        assert [t.id for t in page] == [threads[2].id, threads[1].id]

    def test_sticky_topics(self, forum_manager, thread_manager, db_manager, public_forum, members_forum, member):
        local = thread_manager.create_thread(public_forum.id, "Rules", "be nice", member)
        announcement = thread_manager.create_thread(members_forum.id, "News", "hello", member)
        db_manager.update_thread(local.id, is_sticky=True)
        db_manager.update_thread(announcement.id, is_global_sticky=True)

        for_member = [t.id for t in forum_manager.get_sticky_topics(public_forum.id, member)]
        for_anonymous = [t.id for t in forum_manager.get_sticky_topics(public_forum.id, None)]
        local_only = [t.id for t in forum_manager.get_sticky_topics(public_forum.id, member, include_global=False)]

        assert set(for_member) == {local.id, announcement.id}
        assert for_anonymous == [local.id]
        assert local_only == [local.id]
        assert [t.id for t in forum_manager.global_announcements(public_forum.holder_id, member)] == [announcement.id]


class TestStatistics:
    """Test post, topic and author counts."""

    def test_counts(self, forum_manager, thread_manager, db_manager, holder, public_forum, members_forum, member, admin):
        thread = thread_manager.create_thread(public_forum.id, "One", "1", member)
        thread_manager.add_post(thread.id, "2", admin)
        thread_manager.create_thread(members_forum.id, "Two", "3", member)
        ghost = db_manager.create_member("ghost@example.com", nickname="ghost")
        thread_manager.add_post(thread.id, "4", ghost)
        db_manager.update_member(ghost.id, forum_status=ForumStatus.GHOST.value)

        assert forum_manager.num_posts(forum_id=public_forum.id) == 2
        assert forum_manager.num_topics(forum_id=public_forum.id) == 1
        assert forum_manager.num_authors(forum_id=public_forum.id) == 2
        assert forum_manager.holder_stats(holder.id) == {"posts": 3, "topics": 2, "authors": 2}

    def test_exactly_one_scope(self, forum_manager, holder, public_forum):
        with pytest.raises(ValueError):
            forum_manager.num_posts()
        with pytest.raises(ValueError):
            forum_manager.num_posts(forum_id=public_forum.id, holder_id=holder.id)

    def test_stats_missing_holder(self, forum_manager):
        with pytest.raises(NotFoundError):
            forum_manager.holder_stats(999)


class TestRecentAndPopular:
    """Test recent posts, new-post checks and popular threads."""

    def test_recent_posts_visible_only(self, forum_manager, thread_manager, holder, public_forum, members_forum, member):
        public = thread_manager.create_thread(public_forum.id, "Public", "p", member)
        thread_manager.create_thread(members_forum.id, "Private", "q", member)

        anonymous = forum_manager.recent_posts(holder.id, None)
        logged_in = forum_manager.recent_posts(holder.id, member)

        assert [p.thread_id for p in anonymous] == [public.id]
        assert len(logged_in) == 2

    def test_recent_posts_in_thread(self, forum_manager, thread_manager, holder, public_forum, member):
        thread = thread_manager.create_thread(public_forum.id, "T", "one", member)
        reply = thread_manager.add_post(thread.id, "two", member)
        thread_manager.create_thread(public_forum.id, "Other", "three", member)

        posts = forum_manager.recent_posts(holder.id, member, thread_id=thread.id, limit=1)

        assert [p.id for p in posts] == [reply.id]

    def test_new_posts_available(self, forum_manager, thread_manager, holder, public_forum, member):
        thread = thread_manager.create_thread(public_forum.id, "T", "one", member)
        first = thread_manager.first_post(thread.id)

        anything = forum_manager.new_posts_available(holder.id, member)
        nothing_new = forum_manager.new_posts_available(holder.id, member, last_post_id=first.id)
        reply = thread_manager.add_post(thread.id, "two", member)
        something_new = forum_manager.new_posts_available(holder.id, member, last_post_id=first.id)

        assert anything.available is True
        assert anything.last_id == first.id
        assert nothing_new.available is False
        assert something_new.available is True
        assert something_new.last_id == reply.id

    def test_new_posts_since_visit(self, forum_manager, thread_manager, holder, public_forum, member):
        thread_manager.create_thread(public_forum.id, "T", "one", member)

        future = datetime.utcnow() + timedelta(days=1)
        past = datetime.utcnow() - timedelta(days=1)

        assert forum_manager.new_posts_available(holder.id, member, last_visit=future).available is False
        assert forum_manager.new_posts_available(holder.id, member, last_visit=past).available is True

    def test_popular_threads(self, forum_manager, thread_manager, holder, public_forum, member):
        quiet = thread_manager.create_thread(public_forum.id, "Quiet", "one", member)
        busy = thread_manager.create_thread(public_forum.id, "Busy", "one", member)
        thread_manager.add_post(busy.id, "two", member)

        ranked = forum_manager.popular_threads(holder.id, None)

        assert [(t.id, score) for t, score in ranked] == [(busy.id, 2), (quiet.id, 1)]
        with pytest.raises(ValueError):
            forum_manager.popular_threads(holder.id, None, by="likes")
