"""
Access control for forums, threads, posts and members

Pure predicate functions: every check takes the entity and an explicit
member (``None`` for an anonymous viewer) and returns a boolean. Nothing
here touches the database, so entities must arrive with their forum,
holder, moderators and groups already loaded.

Suspension checks accept an optional ``today`` date; it defaults to the
current local date and time of day is never considered.
"""

from datetime import date
from typing import Iterable, Optional, Tuple

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


# ----------------------------------------------------------------------
# Forums
# ----------------------------------------------------------------------

def can_moderate(forum: Forum, member: Optional[Member]) -> bool:
    """Admins moderate every forum; others only those they are a moderator of."""
    if member is None:
        return False
    if member.is_admin:
        return True
    return member.id in forum.moderator_ids()


def can_view(forum: Forum, member: Optional[Member]) -> bool:
    """The forum's view policy admits the member, or the member moderates it."""
    view_type, groups = _resolve_view_policy(forum)
    return _view_policy_allows(view_type, groups, member) or can_moderate(forum, member)


def can_post(forum: Forum, member: Optional[Member], today: Optional[date] = None) -> bool:
    """
    Whether ``member`` may start threads or reply in ``forum``.

    An ``Inherit`` forum defers to its holder's ``holder_can_post``, so only
    admins hold edit rights there; a forum without a holder refuses
    everyone. ``NoOne`` refuses everyone, moderators included. Otherwise
    moderators and admins pass any policy. Banned and suspended members are
    refused even by ``Anyone``.
    """
    if forum.can_post_type == CanPostType.INHERIT:
        if forum.holder is None:
            return False
        return holder_can_post(forum.holder, member, today)
    return _post_policy_allows(
        forum.can_post_type, forum.poster_groups, member, can_moderate(forum, member), today
    )


def can_attach(forum: Forum) -> bool:
    return bool(forum.can_attach_files)


def can_see_awaiting(forum: Forum, member: Optional[Member]) -> bool:
    """Posts awaiting moderation are listed for the forum's moderators and admins."""
    return can_moderate(forum, member)


# ----------------------------------------------------------------------
# Forum holders
# ----------------------------------------------------------------------

def holder_can_view(holder: ForumHolder, member: Optional[Member]) -> bool:
    return _view_policy_allows(holder.can_view_type, holder.viewer_groups, member)


def holder_can_post(holder: ForumHolder, member: Optional[Member], today: Optional[date] = None) -> bool:
    """Same rules as can_post; only admins hold edit rights on a holder."""
    if holder.can_post_type == CanPostType.INHERIT:
        return False
    is_admin = member is not None and bool(member.is_admin)
    return _post_policy_allows(holder.can_post_type, holder.poster_groups, member, is_admin, today)


# ----------------------------------------------------------------------
# Threads
# ----------------------------------------------------------------------

def can_view_thread(thread: ForumThread, member: Optional[Member]) -> bool:
    return can_view(thread.forum, member)


def can_moderate_thread(thread: ForumThread, member: Optional[Member]) -> bool:
    return can_moderate(thread.forum, member)


def can_post_thread(thread: ForumThread, member: Optional[Member], today: Optional[date] = None) -> bool:
    """Replies need post rights on the forum and a thread that is not read-only."""
    return can_post(thread.forum, member, today) and not thread.is_read_only


def can_create_post(thread: ForumThread, member: Optional[Member], today: Optional[date] = None) -> bool:
    return can_post_thread(thread, member, today)


def can_edit_thread(thread: ForumThread, member: Optional[Member]) -> bool:
    return can_moderate(thread.forum, member)


def can_delete_thread(thread: ForumThread, member: Optional[Member]) -> bool:
    return can_moderate(thread.forum, member)


# ----------------------------------------------------------------------
# Posts and attachments
# ----------------------------------------------------------------------

def can_view_post(post: Post, member: Optional[Member]) -> bool:
    """
    Whether ``member`` may see ``post``.

    Posts by a member who is not in Normal standing are hidden from
    everyone except a Ghost author looking at their own post. A post whose
    author has been deleted counts as written by a Normal member.
    """
    author = post.author
    author_status = author.forum_status if author is not None else ForumStatus.NORMAL.value
    if author_status != ForumStatus.NORMAL:
        is_author = member is not None and member.id == post.author_id
        if not is_author or member.forum_status != ForumStatus.GHOST:
            return False
    return can_view_thread(post.thread, member)


def can_edit_post(post: Post, member: Optional[Member], today: Optional[date] = None) -> bool:
    """Admins edit anything; authors edit their own posts while they may still reply."""
    if member is None:
        return False
    if member.is_admin:
        return True
    return can_post_thread(post.thread, member, today) and member.id == post.author_id


def can_delete_post(post: Post, member: Optional[Member], today: Optional[date] = None) -> bool:
    """Editors may delete; moderators may delete even in read-only threads."""
    return can_edit_post(post, member, today) or can_moderate(post.thread.forum, member)


def can_edit_attachment(attachment: PostAttachment, member: Optional[Member], today: Optional[date] = None) -> bool:
    return can_edit_post(attachment.post, member, today)


def can_delete_attachment(attachment: PostAttachment, member: Optional[Member], today: Optional[date] = None) -> bool:
    return can_delete_post(attachment.post, member, today)


# ----------------------------------------------------------------------
# Members
# ----------------------------------------------------------------------

def can_edit_member(target: Member, member: Optional[Member]) -> bool:
    if member is None:
        return False
    return bool(member.is_admin) or member.id == target.id


# ----------------------------------------------------------------------
# Policy resolution
# ----------------------------------------------------------------------

def _resolve_view_policy(forum: Forum) -> Tuple[str, Iterable[Group]]:
    if forum.can_view_type != CanViewType.INHERIT:
        return forum.can_view_type, forum.viewer_groups
    holder = forum.holder
    if holder is None or holder.can_view_type == CanViewType.INHERIT:
        return CanViewType.ANYONE.value, []
    return holder.can_view_type, holder.viewer_groups


def _post_policy_allows(
    post_type: str,
    groups: Iterable[Group],
    member: Optional[Member],
    has_edit_rights: bool,
    today: Optional[date]
) -> bool:
    if post_type == CanPostType.NO_ONE:
        return False
    if has_edit_rights:
        return True
    if member is not None and (member.is_banned() or member.is_suspended(today)):
        return False
    if post_type == CanPostType.ANYONE:
        return True
    if member is None:
        return False
    if post_type == CanPostType.LOGGED_IN_USERS:
        return True
    if post_type == CanPostType.ONLY_THESE_USERS:
        return member.in_any_group(group.id for group in groups)
    return False


def _view_policy_allows(view_type: str, groups: Iterable[Group], member: Optional[Member]) -> bool:
    if view_type == CanViewType.ANYONE:
        return True
    if member is None:
        return False
    if member.is_admin:
        return True
    if view_type == CanViewType.LOGGED_IN_USERS:
        return True
    if view_type == CanViewType.ONLY_THESE_USERS:
        return member.in_any_group(group.id for group in groups)
    return False
