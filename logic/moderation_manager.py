"""
Moderation Manager for the forum core

Manages moderation actions: member standing (ban, ghost, suspend), post
status transitions, spam removal, thread flags and moderator seats.
Every action is checked against the moderator's rights on the forum
concerned and refused with PermissionDeniedError otherwise.
"""

import logging
from datetime import date
from typing import Optional

from core.db_manager import DBManager
from core.error_handler import NotFoundError, PermissionDeniedError
from logic import access_control
from logic.thread_manager import ThreadManager
from models.database import (
    Forum,
    ForumStatus,
    ForumThread,
    Member,
    Post,
    PostStatus,
)


logger = logging.getLogger(__name__)


class ModerationManager:
    """
    Manages moderation operations.

    Responsibilities:
    - Change a member's forum standing (Normal, Banned, Ghost) and suspension
    - Approve, reject and archive posts
    - Remove spam and ban its author
    - Toggle sticky, global sticky and read-only flags on threads
    - Grant and revoke moderator seats (admins only)
    """

    def __init__(self, db_manager: DBManager, thread_manager: ThreadManager):
        """
        Initialize ModerationManager.

        Args:
            db_manager: DBManager instance for database operations
            thread_manager: ThreadManager used for removals and post observers
        """
        self.db = db_manager
        self.threads = thread_manager

    # ------------------------------------------------------------------
    # Member standing
    # ------------------------------------------------------------------

    def ban_member(self, member_id: int, forum_id: int, moderator: Optional[Member]) -> Member:
        """
        Ban a member from posting and hide their posts.

        Args:
            member_id: Member to ban
            forum_id: Forum the moderator acts from
            moderator: Acting member

        Returns:
            Member: Updated member

        Raises:
            NotFoundError: If the forum or member does not exist
            PermissionDeniedError: If the moderator may not act on this member
        """
        return self._set_status(member_id, forum_id, moderator, ForumStatus.BANNED)

    def ghost_member(self, member_id: int, forum_id: int, moderator: Optional[Member]) -> Member:
        """Hide a member's posts from everyone but themselves."""
        return self._set_status(member_id, forum_id, moderator, ForumStatus.GHOST)

    def restore_member(self, member_id: int, forum_id: int, moderator: Optional[Member]) -> Member:
        """Return a banned or ghosted member to Normal standing."""
        return self._set_status(member_id, forum_id, moderator, ForumStatus.NORMAL)

    def suspend_member(self, member_id: int, until: Optional[date], admin: Optional[Member]) -> Member:
        """
        Suspend a member from posting until ``until`` (exclusive).

        Passing None lifts the suspension. Only admins may suspend.

        Raises:
            PermissionDeniedError: If ``admin`` is not an administrator
            NotFoundError: If the member does not exist
        """
        if admin is None or not admin.is_admin:
            raise PermissionDeniedError("Only administrators may suspend members")
        if self.db.get_member(member_id) is None:
            raise NotFoundError(f"Member {member_id} not found")

        member = self.db.update_member(member_id, suspended_until=until)
        if until:
            logger.info(f"Member {member_id} suspended until {until.isoformat()} by {admin.id}")
        else:
            logger.info(f"Suspension of member {member_id} lifted by {admin.id}")
        return member

    def _set_status(self, member_id: int, forum_id: int, moderator: Optional[Member], status: ForumStatus) -> Member:
        forum = self._moderated_forum(forum_id, moderator)
        target = self.db.get_member(member_id)
        if target is None:
            raise NotFoundError(f"Member {member_id} not found")
        if target.id == moderator.id:
            raise PermissionDeniedError("Moderators cannot change their own standing")
        if target.is_admin and not moderator.is_admin:
            raise PermissionDeniedError("Only administrators may change an administrator's standing")

        member = self.db.update_member(member_id, forum_status=status.value)
        logger.info(
            f"Member {member_id} set to {status.value} by {moderator.id} in forum {forum.id}"
        )
        return member

    # ------------------------------------------------------------------
    # Post status
    # ------------------------------------------------------------------

    def approve_post(self, post_id: int, moderator: Optional[Member]) -> Post:
        """
        Publish a post awaiting moderation and run the post observers.

        Raises:
            ValueError: If the post is not awaiting moderation
        """
        post = self._moderated_post(post_id, moderator)
        if post.status != PostStatus.AWAITING:
            raise ValueError(f"Post {post_id} is not awaiting moderation")

        approved = self.db.update_post(post_id, status=PostStatus.MODERATED.value)
        logger.info(f"Post {post_id} approved by {moderator.id}")
        self.threads.notify_observers(approved)
        return approved

    def reject_post(self, post_id: int, moderator: Optional[Member]) -> Post:
        return self._set_post_status(post_id, moderator, PostStatus.REJECTED)

    def archive_post(self, post_id: int, moderator: Optional[Member]) -> Post:
        return self._set_post_status(post_id, moderator, PostStatus.ARCHIVED)

    def _set_post_status(self, post_id: int, moderator: Optional[Member], status: PostStatus) -> Post:
        self._moderated_post(post_id, moderator)
        post = self.db.update_post(post_id, status=status.value)
        logger.info(f"Post {post_id} set to {status.value} by {moderator.id}")
        return post

    def mark_as_spam(self, post_id: int, moderator: Optional[Member]) -> bool:
        """
        Remove a spam post and ban its author.

        Removing the first post removes the whole thread.

        Returns:
            bool: True if the whole thread was removed

        Raises:
            PermissionDeniedError: If the moderator wrote the post
        """
        post = self._moderated_post(post_id, moderator)
        if post.author_id == moderator.id:
            raise PermissionDeniedError("Moderators cannot mark their own posts as spam")

        author = post.author
        thread_removed = self.threads.remove_post(post)

        if author is not None and not author.is_admin:
            self.db.update_member(author.id, forum_status=ForumStatus.BANNED.value)
            logger.info(f"Member {author.id} banned for spam by {moderator.id}")

        logger.info(f"Post {post_id} marked as spam by {moderator.id}")
        return thread_removed

    # ------------------------------------------------------------------
    # Thread flags
    # ------------------------------------------------------------------

    def set_sticky(self, thread_id: int, value: bool, moderator: Optional[Member]) -> ForumThread:
        return self._set_thread_flag(thread_id, moderator, is_sticky=bool(value))

    def set_global_sticky(self, thread_id: int, value: bool, moderator: Optional[Member]) -> ForumThread:
        return self._set_thread_flag(thread_id, moderator, is_global_sticky=bool(value))

    def set_read_only(self, thread_id: int, value: bool, moderator: Optional[Member]) -> ForumThread:
        return self._set_thread_flag(thread_id, moderator, is_read_only=bool(value))

    def _set_thread_flag(self, thread_id: int, moderator: Optional[Member], **flags) -> ForumThread:
        thread = self.db.get_thread(thread_id)
        if thread is None:
            raise NotFoundError(f"Thread {thread_id} not found")
        if not access_control.can_edit_thread(thread, moderator):
            if not access_control.can_view_thread(thread, moderator):
                raise NotFoundError(f"Thread {thread_id} not found")
            raise PermissionDeniedError(f"Editing thread {thread_id} is not allowed")

        updated = self.db.update_thread(thread_id, **flags)
        logger.info(f"Thread {thread_id} flags {flags} set by {moderator.id}")
        return updated

    # ------------------------------------------------------------------
    # Moderator seats
    # ------------------------------------------------------------------

    def add_moderator(self, forum_id: int, member_id: int, admin: Optional[Member]) -> Forum:
        """
        Make a member a co-moderator of a forum. Admins only.

        Raises:
            PermissionDeniedError: If ``admin`` is not an administrator
            NotFoundError: If the forum or member does not exist
        """
        self._require_admin(admin)
        self.db.add_forum_moderator(forum_id, member_id)
        logger.info(f"Member {member_id} now moderates forum {forum_id}")
        return self.db.get_forum(forum_id)

    def remove_moderator(self, forum_id: int, member_id: int, admin: Optional[Member]) -> Forum:
        self._require_admin(admin)
        if self.db.remove_forum_moderator(forum_id, member_id):
            logger.info(f"Member {member_id} no longer moderates forum {forum_id}")
        return self.db.get_forum(forum_id)

    def set_designated_moderator(self, forum_id: int, member_id: Optional[int], admin: Optional[Member]) -> Forum:
        self._require_admin(admin)
        if member_id is not None and self.db.get_member(member_id) is None:
            raise NotFoundError(f"Member {member_id} not found")
        return self.db.update_forum(forum_id, moderator_id=member_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_admin(self, member: Optional[Member]) -> None:
        if member is None or not member.is_admin:
            raise PermissionDeniedError("Only administrators may manage moderators")

    def _moderated_forum(self, forum_id: int, moderator: Optional[Member]) -> Forum:
        forum = self.db.get_forum(forum_id)
        if forum is None:
            raise NotFoundError(f"Forum {forum_id} not found")
        if not access_control.can_moderate(forum, moderator):
            if not access_control.can_view(forum, moderator):
                raise NotFoundError(f"Forum {forum_id} not found")
            raise PermissionDeniedError(f"Moderating forum {forum_id} is not allowed")
        return forum

    def _moderated_post(self, post_id: int, moderator: Optional[Member]) -> Post:
        post = self.db.get_post(post_id)
        if post is None:
            raise NotFoundError(f"Post {post_id} not found")
        if not access_control.can_moderate(post.thread.forum, moderator):
            if not access_control.can_view_post(post, moderator):
                raise NotFoundError(f"Post {post_id} not found")
            raise PermissionDeniedError(f"Moderating post {post_id} is not allowed")
        return post
