"""
Tests for the access control predicates

The predicates are pure, so entities are built in memory without a
database session.
"""

import pytest
from datetime import date, timedelta

from logic import access_control
from models.database import (
    CanPostType,
    CanViewType,
    Forum,
    ForumHolder,
    ForumStatus,
    ForumThread,
    Group,
    Member,
    Post,
    PostAttachment,
)


TODAY = date(2024, 6, 1)


def make_member(member_id, admin=False, status=ForumStatus.NORMAL, groups=(), suspended_until=None):
    return Member(
        id=member_id,
        email=f"member{member_id}@example.com",
        is_admin=admin,
        forum_status=status.value,
        suspended_until=suspended_until,
        groups=list(groups),
    )


def make_holder(view=CanViewType.ANYONE, post=CanPostType.LOGGED_IN_USERS, poster_groups=(), viewer_groups=()):
    return ForumHolder(
        id=1,
        title="Forums",
        url_segment="forums",
        can_view_type=view.value,
        can_post_type=post.value,
        poster_groups=list(poster_groups),
        viewer_groups=list(viewer_groups),
    )


def make_forum(holder=None, view=CanViewType.INHERIT, post=CanPostType.INHERIT, moderators=(),
               moderator=None, poster_groups=(), viewer_groups=(), attach=False):
    return Forum(
        id=10,
        title="General",
        url_segment="general",
        holder=holder,
        can_view_type=view.value,
        can_post_type=post.value,
        can_attach_files=attach,
        moderators=list(moderators),
        moderator_id=moderator.id if moderator else None,
        poster_groups=list(poster_groups),
        viewer_groups=list(viewer_groups),
    )


def make_thread(forum, read_only=False):
    return ForumThread(id=100, title="Hello", forum=forum, is_read_only=read_only)


def make_post(thread, author):
    return Post(id=1000, thread=thread, author=author, author_id=author.id if author else None, content="hi")


@pytest.fixture
def holder():
    return make_holder()


@pytest.fixture
def member():
    return make_member(1)


@pytest.fixture
def admin():
    return make_member(2, admin=True)


@pytest.fixture
def moderator():
    return make_member(3)


class TestCanModerate:
    """Test moderator rights."""

    def test_admin_moderates_everything(self, holder, admin):
        assert access_control.can_moderate(make_forum(holder), admin) is True

    def test_co_moderator(self, holder, moderator, member):
        forum = make_forum(holder, moderators=[moderator])

        assert access_control.can_moderate(forum, moderator) is True
        assert access_control.can_moderate(forum, member) is False

    def test_designated_moderator(self, holder, moderator):
        forum = make_forum(holder, moderator=moderator)

        assert access_control.can_moderate(forum, moderator) is True

    def test_anonymous(self, holder):
        assert access_control.can_moderate(make_forum(holder), None) is False


class TestCanView:
    """Test view policies."""

    def test_public_forum(self, holder):
        assert access_control.can_view(make_forum(holder), None) is True

    def test_logged_in_only(self, holder, member):
        forum = make_forum(holder, view=CanViewType.LOGGED_IN_USERS)

        assert access_control.can_view(forum, None) is False
        assert access_control.can_view(forum, member) is True

    def test_inherits_holder_policy(self, member):
        holder = make_holder(view=CanViewType.LOGGED_IN_USERS)
        forum = make_forum(holder)

        assert access_control.can_view(forum, None) is False
        assert access_control.can_view(forum, member) is True

    def test_group_restricted(self, holder):
        group = Group(id=5, title="Staff", code="staff")
        insider = make_member(7, groups=[group])
        outsider = make_member(8)
        forum = make_forum(holder, view=CanViewType.ONLY_THESE_USERS, viewer_groups=[group])

        assert access_control.can_view(forum, insider) is True
        assert access_control.can_view(forum, outsider) is False

    def test_moderator_overrides_view_policy(self, holder, moderator):
        forum = make_forum(holder, view=CanViewType.ONLY_THESE_USERS, moderators=[moderator])

        assert access_control.can_view(forum, moderator) is True

    def test_forum_without_holder_is_public(self):
        assert access_control.can_view(make_forum(None), None) is True


class TestCanPost:
    """Test post policies."""

    def test_logged_in_users(self, holder, member):
        forum = make_forum(holder, post=CanPostType.LOGGED_IN_USERS)

        assert access_control.can_post(forum, member, TODAY) is True
        assert access_control.can_post(forum, None, TODAY) is False

    def test_anyone_allows_anonymous(self, holder):
        forum = make_forum(holder, post=CanPostType.ANYONE)

        assert access_control.can_post(forum, None, TODAY) is True

    def test_no_one_refuses_moderators(self, holder, admin, moderator):
        forum = make_forum(holder, post=CanPostType.NO_ONE, moderators=[moderator])

        assert access_control.can_post(forum, admin, TODAY) is False
        assert access_control.can_post(forum, moderator, TODAY) is False

    def test_only_these_users(self, holder):
        group = Group(id=5, title="Writers", code="writers")
        writer = make_member(7, groups=[group])
        reader = make_member(8)
        forum = make_forum(holder, post=CanPostType.ONLY_THESE_USERS, poster_groups=[group])

        assert access_control.can_post(forum, writer, TODAY) is True
        assert access_control.can_post(forum, reader, TODAY) is False

    def test_inherit_uses_holder_policy(self, member):
        holder = make_holder(post=CanPostType.ANYONE)
        forum = make_forum(holder)

        assert access_control.can_post(forum, None, TODAY) is True
        assert access_control.can_post(forum, member, TODAY) is True

    def test_inherit_uses_holder_groups(self):
        group = Group(id=5, title="Writers", code="writers")
        holder = make_holder(post=CanPostType.ONLY_THESE_USERS, poster_groups=[group])
        forum = make_forum(holder)

        assert access_control.can_post(forum, make_member(7, groups=[group]), TODAY) is True
        assert access_control.can_post(forum, make_member(8), TODAY) is False

    def test_inherit_from_no_one_refuses_admins(self, admin, member):
        """An inherited NoOne policy refuses every identity, admins included."""
        holder = make_holder(post=CanPostType.NO_ONE)
        forum = make_forum(holder)

        assert access_control.can_post(forum, admin, TODAY) is False
        assert access_control.can_post(forum, member, TODAY) is False
        assert access_control.can_post(forum, None, TODAY) is False

    def test_inherit_without_holder(self, admin):
        forum = make_forum(None)

        assert access_control.can_post(forum, admin, TODAY) is False

    def test_inherit_ignores_forum_moderator_rights(self, moderator):
        """Moderating an inheriting forum does not bypass the holder's poster groups."""
        group = Group(id=5, title="Writers", code="writers")
        holder = make_holder(post=CanPostType.ONLY_THESE_USERS, poster_groups=[group])
        forum = make_forum(holder, moderators=[moderator])

        assert access_control.can_moderate(forum, moderator) is True
        assert access_control.can_post(forum, moderator, TODAY) is False
        assert access_control.can_post(forum, moderator, TODAY) == access_control.holder_can_post(holder, moderator, TODAY)

    def test_inherit_refuses_banned_moderator(self):
        banned = make_member(7, status=ForumStatus.BANNED)
        holder = make_holder(post=CanPostType.LOGGED_IN_USERS)
        forum = make_forum(holder, moderators=[banned])

        assert access_control.can_post(forum, banned, TODAY) is False

    def test_inherit_keeps_admin_rights(self, admin):
        holder = make_holder(post=CanPostType.ONLY_THESE_USERS)

        assert access_control.can_post(make_forum(holder), admin, TODAY) is True

    @pytest.mark.parametrize("post_type", [
        CanPostType.ANYONE,
        CanPostType.LOGGED_IN_USERS,
        CanPostType.ONLY_THESE_USERS,
        CanPostType.INHERIT,
    ])
    def test_banned_member_cannot_post(self, post_type):
        holder = make_holder(post=CanPostType.ANYONE)
        banned = make_member(9, status=ForumStatus.BANNED)
        forum = make_forum(holder, post=post_type)

        assert access_control.can_post(forum, banned, TODAY) is False

    @pytest.mark.parametrize("post_type", [
        CanPostType.ANYONE,
        CanPostType.LOGGED_IN_USERS,
        CanPostType.INHERIT,
    ])
    def test_suspended_member_cannot_post(self, post_type):
        holder = make_holder(post=CanPostType.ANYONE)
        suspended = make_member(9, suspended_until=TODAY + timedelta(days=1))
        forum = make_forum(holder, post=post_type)

        assert access_control.can_post(forum, suspended, TODAY) is False

    def test_suspension_ends_on_its_date(self, holder):
        member = make_member(9, suspended_until=TODAY)
        forum = make_forum(holder, post=CanPostType.LOGGED_IN_USERS)

        assert access_control.can_post(forum, member, TODAY) is True

    def test_banned_moderator_keeps_rights(self, holder):
        banned = make_member(9, status=ForumStatus.BANNED)
        forum = make_forum(holder, post=CanPostType.LOGGED_IN_USERS, moderators=[banned])

        assert access_control.can_post(forum, banned, TODAY) is True

    def test_holder_can_post(self, admin, member):
        holder = make_holder(post=CanPostType.ONLY_THESE_USERS)

        assert access_control.holder_can_post(holder, admin, TODAY) is True
        assert access_control.holder_can_post(holder, member, TODAY) is False


class TestThreadsAndPosts:
    """Test thread and post predicates."""

    def test_read_only_thread(self, holder, member):
        forum = make_forum(holder, post=CanPostType.LOGGED_IN_USERS)

        assert access_control.can_post_thread(make_thread(forum), member, TODAY) is True
        assert access_control.can_post_thread(make_thread(forum, read_only=True), member, TODAY) is False
        assert access_control.can_create_post(make_thread(forum, read_only=True), member, TODAY) is False

    def test_ghost_sees_own_post(self, holder):
        ghost = make_member(11, status=ForumStatus.GHOST)
        other = make_member(12)
        post = make_post(make_thread(make_forum(holder)), ghost)

        assert access_control.can_view_post(post, ghost) is True
        assert access_control.can_view_post(post, other) is False
        assert access_control.can_view_post(post, None) is False

    def test_banned_author_hidden(self, holder):
        banned = make_member(11, status=ForumStatus.BANNED)
        post = make_post(make_thread(make_forum(holder)), banned)

        assert access_control.can_view_post(post, banned) is False
        assert access_control.can_view_post(post, make_member(12)) is False

    def test_deleted_author_post_visible(self, holder):
        post = make_post(make_thread(make_forum(holder)), None)

        assert access_control.can_view_post(post, None) is True

    def test_edit_own_post(self, holder, member, admin):
        forum = make_forum(holder, post=CanPostType.LOGGED_IN_USERS)
        post = make_post(make_thread(forum), member)

        assert access_control.can_edit_post(post, member, TODAY) is True
        assert access_control.can_edit_post(post, make_member(12), TODAY) is False
        assert access_control.can_edit_post(post, admin, TODAY) is True
        assert access_control.can_edit_post(post, None, TODAY) is False

    def test_read_only_blocks_author_edit(self, holder, member):
        forum = make_forum(holder, post=CanPostType.LOGGED_IN_USERS)
        post = make_post(make_thread(forum, read_only=True), member)

        assert access_control.can_edit_post(post, member, TODAY) is False
        assert access_control.can_delete_post(post, member, TODAY) is False

    def test_moderator_deletes_in_read_only_thread(self, holder, member, moderator):
        forum = make_forum(holder, post=CanPostType.LOGGED_IN_USERS, moderators=[moderator])
        post = make_post(make_thread(forum, read_only=True), member)

        assert access_control.can_edit_post(post, moderator, TODAY) is False
        assert access_control.can_delete_post(post, moderator, TODAY) is True

    def test_thread_edit_and_delete_need_moderation(self, holder, member, moderator):
        thread = make_thread(make_forum(holder, moderators=[moderator]))

        assert access_control.can_edit_thread(thread, moderator) is True
        assert access_control.can_delete_thread(thread, moderator) is True
        assert access_control.can_delete_thread(thread, member) is False

    def test_attachment_rights_follow_post(self, holder, member):
        forum = make_forum(holder, post=CanPostType.LOGGED_IN_USERS, attach=True)
        post = make_post(make_thread(forum), member)
        attachment = PostAttachment(id=1, post=post, filename="a.txt")

        assert access_control.can_attach(forum) is True
        assert access_control.can_edit_attachment(attachment, member, TODAY) is True
        assert access_control.can_delete_attachment(attachment, make_member(12), TODAY) is False

    def test_can_see_awaiting(self, holder, member, moderator):
        forum = make_forum(holder, moderators=[moderator])

        assert access_control.can_see_awaiting(forum, moderator) is True
        assert access_control.can_see_awaiting(forum, member) is False


class TestMembers:
    """Test member edit rights."""

    def test_edit_self_or_admin(self, member, admin):
        other = make_member(12)

        assert access_control.can_edit_member(member, member) is True
        assert access_control.can_edit_member(member, admin) is True
        assert access_control.can_edit_member(member, other) is False
        assert access_control.can_edit_member(member, None) is False
