"""
Thread Manager for the forum core

Manages thread and post creation, editing, deletion and retrieval.
Gates every write through the access control predicates, keeps the
first-post flag and view counters consistent, and runs post-action
observers once a new post is visible.
"""

import logging
from datetime import datetime
from typing import Callable, List, Optional, Sequence

from core.content_renderer import ContentRenderer, BBCodeRenderer, filter_forbidden_words
from core.db_manager import DBManager
from core.error_handler import (
    AttachmentError,
    ForumError,
    NotFoundError,
    PermissionDeniedError,
    get_error_handler,
)
from core.file_manager import AttachmentStore, UploadedFile
from core.session import ViewerSession
from logic import access_control
from models.database import Forum, ForumThread, Member, Post, PostAttachment, PostStatus


logger = logging.getLogger(__name__)


MAX_TITLE_LENGTH = 255

PostObserver = Callable[[Post], None]


class ThreadManagerError(ForumError):
    """Base exception for ThreadManager errors."""
    pass


def page_offset(rank: int, page_size: int) -> int:
    """
    Offset of the page holding the post at ``rank`` (0-based).

    Args:
        rank: Number of visible posts before the post
        page_size: Posts per page

    Returns:
        int: ``floor(rank / page_size) * page_size``
    """
    if page_size < 1:
        raise ValueError("Page size must be at least 1")
    if rank < 0:
        raise ValueError("Rank cannot be negative")
    return (rank // page_size) * page_size


class ThreadManager:
    """
    Manages thread and post operations.

    Responsibilities:
    - Create threads together with their first post
    - Add, edit and delete posts, including their attachments
    - Replace and remove single attachments
    - Move threads between forums
    - Count thread views once per viewer session
    - Compute post titles, links and page offsets
    - Notify registered observers about new visible posts
    """

    def __init__(
        self,
        db_manager: DBManager,
        attachment_store: Optional[AttachmentStore] = None,
        renderer: Optional[ContentRenderer] = None,
        posts_per_page: int = 8
    ):
        """
        Initialize ThreadManager.

        Args:
            db_manager: DBManager instance for database operations
            attachment_store: Store for uploaded attachments
            renderer: Post content renderer (BBCode when omitted)
            posts_per_page: Page size used for post links
        """
        if posts_per_page < 1:
            raise ValueError("posts_per_page must be at least 1")
        self.db = db_manager
        self.attachments = attachment_store
        self.renderer = renderer or BBCodeRenderer()
        self.posts_per_page = posts_per_page
        self._observers: List[PostObserver] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def add_observer(self, callback: PostObserver) -> None:
        """
        Register a callback run for every new Moderated post.

        Callbacks run in registration order after the post is committed.
        """
        self._observers.append(callback)

    def remove_observer(self, callback: PostObserver) -> None:
        self._observers.remove(callback)

    def notify_observers(self, post: Post) -> None:
        """
        Run every observer for ``post``.

        A failing observer is logged and the remaining observers still run.
        """
        for callback in list(self._observers):
            try:
                callback(post)
            except Exception as e:
                get_error_handler().handle_error(
                    e,
                    f"post observer {getattr(callback, '__name__', repr(callback))}",
                    thread_id=post.thread_id,
                    show_notification=False
                )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_thread(
        self,
        forum_id: int,
        title: str,
        content: str,
        author: Optional[Member],
        attachments: Optional[Sequence[UploadedFile]] = None,
        status: Optional[str] = None
    ) -> ForumThread:
        """
        Create a new thread with its first post.

        Args:
            forum_id: Forum the thread is created in
            title: Thread title (1-255 characters)
            content: Content of the first post
            author: Posting member, None for anonymous
            attachments: Optional uploads for the first post
            status: Post status; Moderated when omitted

        Returns:
            ForumThread: Created thread

        Raises:
            NotFoundError: If the forum does not exist or is hidden
            PermissionDeniedError: If the author may not post here
            ValueError: If title or content is invalid
            ThreadManagerError: If thread creation fails
        """
        title = (title or "").strip()
        if not title or len(title) > MAX_TITLE_LENGTH:
            raise ValueError(f"Thread title must be 1-{MAX_TITLE_LENGTH} characters")
        self._validate_content(content)

        forum = self._get_visible_forum(forum_id, author)
        if not access_control.can_post(forum, author):
            raise PermissionDeniedError(f"Posting to forum {forum_id} is not allowed")
        self._check_attachments(forum, attachments)

        status = status or PostStatus.MODERATED.value
        try:
            thread, post = self.db.create_thread(
                forum_id=forum.id,
                title=title,
                author_id=author.id if author else None,
                content=self._filter(forum, content),
                status=status,
            )
            if attachments:
                self._attach_or_undo(post, attachments)
        except ForumError:
            raise
        except Exception as e:
            logger.error(f"Failed to create thread: {e}")
            raise ThreadManagerError(f"Thread creation failed: {e}") from e

        logger.info(f"Created thread '{title}' with ID {thread.id} in forum {forum.id}")

        if post.status == PostStatus.MODERATED:
            self.notify_observers(post)
        return thread

    def add_post(
        self,
        thread_id: int,
        content: str,
        author: Optional[Member],
        attachments: Optional[Sequence[UploadedFile]] = None,
        status: Optional[str] = None
    ) -> Post:
        """
        Reply to a thread.

        Args:
            thread_id: Thread identifier
            content: Post content
            author: Posting member, None for anonymous
            attachments: Optional uploads
            status: Post status; Moderated when omitted

        Returns:
            Post: Created post

        Raises:
            NotFoundError: If the thread does not exist or is hidden
            PermissionDeniedError: If the author may not reply
            ValueError: If content is invalid
            ThreadManagerError: If post creation fails
        """
        self._validate_content(content)

        thread = self._get_visible_thread(thread_id, author)
        if not access_control.can_post_thread(thread, author):
            raise PermissionDeniedError(f"Replying to thread {thread_id} is not allowed")
        self._check_attachments(thread.forum, attachments)

        status = status or PostStatus.MODERATED.value
        try:
            post = self.db.add_post(
                thread_id=thread.id,
                author_id=author.id if author else None,
                content=self._filter(thread.forum, content),
                status=status,
            )
            if attachments:
                self._attach_or_undo(post, attachments)
        except ForumError:
            raise
        except Exception as e:
            logger.error(f"Failed to create post: {e}")
            raise ThreadManagerError(f"Post creation failed: {e}") from e

        logger.info(f"Created post {post.id} in thread {thread.id}")

        if post.status == PostStatus.MODERATED:
            self.notify_observers(post)
        return post

    def edit_post(self, post_id: int, content: str, editor: Optional[Member]) -> Post:
        """
        Replace the content of a post.

        Raises:
            NotFoundError: If the post does not exist or is hidden
            PermissionDeniedError: If ``editor`` may not edit the post
        """
        self._validate_content(content)
        post = self._get_visible_post(post_id, editor)
        if not access_control.can_edit_post(post, editor):
            raise PermissionDeniedError(f"Editing post {post_id} is not allowed")

        updated = self.db.update_post(
            post_id,
            content=self._filter(post.thread.forum, content),
            last_edited=datetime.utcnow(),
        )
        logger.info(f"Post {post_id} edited by member {editor.id}")
        return updated

    def delete_post(self, post_id: int, member: Optional[Member]) -> bool:
        """
        Delete a post and release its attachments.

        Deleting the first post of a thread deletes the whole thread.

        Returns:
            bool: True if the whole thread was deleted

        Raises:
            NotFoundError: If the post does not exist or is hidden
            PermissionDeniedError: If ``member`` may not delete the post
        """
        post = self._get_visible_post(post_id, member)
        if not access_control.can_delete_post(post, member):
            raise PermissionDeniedError(f"Deleting post {post_id} is not allowed")
        return self.remove_post(post)

    def remove_post(self, post: Post) -> bool:
        """
        Delete a post without a permission check.

        Callers are responsible for gating. Returns True when the post was the
        first post and the whole thread was removed.
        """
        if post.is_first_post:
            self._release(self.db.delete_thread(post.thread_id))
            logger.info(f"Deleted first post {post.id}, removed thread {post.thread_id}")
            return True
        self._release(self.db.delete_post(post.id))
        return False

    def delete_thread(self, thread_id: int, member: Optional[Member]) -> None:
        """
        Delete a thread with all posts, attachments and subscriptions.

        Raises:
            NotFoundError: If the thread does not exist or is hidden
            PermissionDeniedError: If ``member`` may not delete the thread
        """
        thread = self._get_visible_thread(thread_id, member)
        if not access_control.can_delete_thread(thread, member):
            raise PermissionDeniedError(f"Deleting thread {thread_id} is not allowed")
        self._release(self.db.delete_thread(thread_id))

    def get_attachments(self, post_id: int, viewer: Optional[Member] = None) -> List[PostAttachment]:
        """Attachments of a post ``viewer`` may see, oldest first."""
        if self.get_post(post_id, viewer) is None:
            return []
        return self.db.get_attachments_for_post(post_id)

    def replace_attachment(self, attachment_id: int, upload: UploadedFile, member: Optional[Member]) -> PostAttachment:
        """
        Swap the file of an attachment for a new upload.

        The new file is stored first; the old row and file are removed only
        once the new row is saved.

        Raises:
            NotFoundError: If the attachment does not exist or is hidden
            PermissionDeniedError: If ``member`` may not edit the attachment
            AttachmentError: If the upload is rejected
        """
        attachment = self._get_visible_attachment(attachment_id, member)
        if not access_control.can_edit_attachment(attachment, member):
            raise PermissionDeniedError(f"Editing attachment {attachment_id} is not allowed")
        self._check_attachments(attachment.post.thread.forum, [upload])

        self._store_attachments(attachment.post, [upload])
        old_path = self.db.delete_attachment(attachment_id)
        if old_path:
            self._release([old_path])
        replacement = self.db.get_attachments_for_post(attachment.post_id)[-1]
        logger.info(f"Attachment {attachment_id} of post {attachment.post_id} replaced by {replacement.id}")
        return replacement

    def delete_attachment(self, attachment_id: int, member: Optional[Member]) -> None:
        """
        Remove an attachment and release its file.

        Raises:
            NotFoundError: If the attachment does not exist or is hidden
            PermissionDeniedError: If ``member`` may not delete the attachment
        """
        attachment = self._get_visible_attachment(attachment_id, member)
        if not access_control.can_delete_attachment(attachment, member):
            raise PermissionDeniedError(f"Deleting attachment {attachment_id} is not allowed")

        path = self.db.delete_attachment(attachment_id)
        if path:
            self._release([path])
        logger.info(f"Deleted attachment {attachment_id} of post {attachment.post_id}")

    def move_thread(self, thread_id: int, forum_id: int, member: Optional[Member]) -> ForumThread:
        """
        Move a thread to another forum.

        The member must moderate both forums. Every post follows the thread.

        Raises:
            NotFoundError: If the thread or target forum does not exist
            PermissionDeniedError: If the member does not moderate both forums
        """
        thread = self._get_visible_thread(thread_id, member)
        target = self.db.get_forum(forum_id)
        if target is None:
            raise NotFoundError(f"Forum {forum_id} not found")
        if not (access_control.can_moderate(thread.forum, member) and access_control.can_moderate(target, member)):
            raise PermissionDeniedError(f"Moving thread {thread_id} to forum {forum_id} is not allowed")

        moved = self.db.reparent_thread(thread_id, forum_id)
        logger.info(f"Moved thread {thread_id} from forum {thread.forum_id} to {forum_id}")
        return moved

    def increment_view_count(self, thread_id: int, session: ViewerSession) -> bool:
        """
        Count a view of the thread once per viewer session.

        Returns:
            bool: True if the counter was incremented
        """
        if not session.mark_seen(thread_id):
            return False
        if not self.db.increment_thread_views(thread_id):
            session.forget_seen(thread_id)
            return False
        logger.debug(f"Thread {thread_id} viewed in session {session.session_key}")
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_thread(self, thread_id: int, viewer: Optional[Member] = None) -> Optional[ForumThread]:
        """Thread by ID, or None if it does not exist or ``viewer`` cannot see it."""
        thread = self.db.get_thread(thread_id)
        if thread is None or not access_control.can_view_thread(thread, viewer):
            return None
        return thread

    def get_post(self, post_id: int, viewer: Optional[Member] = None) -> Optional[Post]:
        """Post by ID, or None if it does not exist or ``viewer`` cannot see it."""
        post = self.db.get_post(post_id)
        if post is None or not access_control.can_view_post(post, viewer):
            return None
        return post

    def get_thread_posts(self, thread_id: int) -> List[Post]:
        """
        Retrieve all posts for a thread regardless of status.

        Posts are ordered by creation time, then ID.
        """
        posts = self.db.get_posts_for_thread(thread_id)
        logger.debug(f"Retrieved {len(posts)} posts for thread {thread_id}")
        return posts

    def visible_posts(self, thread_id: int, viewer: Optional[Member]) -> List[Post]:
        """
        Posts of a thread that ``viewer`` may see.

        Moderated posts for everyone, plus Awaiting posts for the forum's
        moderators, with posts by non-Normal authors filtered out.
        """
        thread = self.get_thread(thread_id, viewer)
        if thread is None:
            return []
        statuses = [PostStatus.MODERATED.value]
        if access_control.can_see_awaiting(thread.forum, viewer):
            statuses.append(PostStatus.AWAITING.value)
        posts = self.db.get_posts_for_thread(thread_id, statuses=statuses)
        return [post for post in posts if access_control.can_view_post(post, viewer)]

    def first_post(self, thread_id: int) -> Optional[Post]:
        return self.db.get_first_post(thread_id)

    def latest_post(self, thread_id: int) -> Optional[Post]:
        return self.db.get_latest_post(thread_id, statuses=[PostStatus.MODERATED.value])

    def num_posts(self, thread_id: int) -> int:
        """Number of Moderated posts in a thread."""
        return self.db.count_posts_in_thread(thread_id, statuses=[PostStatus.MODERATED.value])

    def is_first_post(self, post: Post) -> bool:
        return bool(post.is_first_post)

    def title_of(self, post: Post) -> str:
        return post.title

    def post_link(self, post: Post, action: str = "show") -> str:
        """
        Link to a post.

        For "show" the link carries the page offset (``?start=N``) when the
        post is not on the first page and an anchor (``#post<ID>``) when it is
        not the first visible post.
        """
        if action not in ("show", "reply"):
            return f"{post.thread.link(action, show_id=False)}/{post.id}"

        link = post.thread.link(action)
        if action != "show":
            return link

        rank = self.db.count_posts_before(post.thread_id, post.id)
        start = page_offset(rank, self.posts_per_page)
        if start > 0:
            link += f"?start={start}"
        if rank > 0:
            link += f"#post{post.id}"
        return link

    def render_post(self, post: Post) -> str:
        """Post content as sanitised HTML."""
        return self.renderer.render(post.content)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_visible_forum(self, forum_id: int, member: Optional[Member]) -> Forum:
        forum = self.db.get_forum(forum_id)
        if forum is None or not access_control.can_view(forum, member):
            raise NotFoundError(f"Forum {forum_id} not found")
        return forum

    def _get_visible_thread(self, thread_id: int, member: Optional[Member]) -> ForumThread:
        thread = self.get_thread(thread_id, member)
        if thread is None:
            raise NotFoundError(f"Thread {thread_id} not found")
        return thread

    def _get_visible_post(self, post_id: int, member: Optional[Member]) -> Post:
        post = self.get_post(post_id, member)
        if post is None:
            raise NotFoundError(f"Post {post_id} not found")
        return post

    def _get_visible_attachment(self, attachment_id: int, member: Optional[Member]) -> PostAttachment:
        attachment = self.db.get_attachment(attachment_id)
        if attachment is None or not access_control.can_view_post(attachment.post, member):
            raise NotFoundError(f"Attachment {attachment_id} not found")
        return attachment

    def _validate_content(self, content: str) -> None:
        if not content or not content.strip():
            raise ValueError("Post content cannot be empty")

    def _filter(self, forum: Forum, content: str) -> str:
        if forum.holder is None:
            return content
        return filter_forbidden_words(content, forum.holder.forbidden_word_list())

    def _check_attachments(self, forum: Forum, attachments: Optional[Sequence[UploadedFile]]) -> None:
        if not attachments:
            return
        if not access_control.can_attach(forum):
            raise PermissionDeniedError(f"Forum {forum.id} does not accept attachments")
        if self.attachments is None:
            raise AttachmentError("No attachment store configured")

    def _attach_or_undo(self, post: Post, uploads: Sequence[UploadedFile]) -> None:
        """Store uploads for a new post; the post is removed again if any upload fails."""
        try:
            self._store_attachments(post, uploads)
        except Exception:
            self.remove_post(post)
            raise

    def _store_attachments(self, post: Post, uploads: Sequence[UploadedFile]) -> None:
        for upload in uploads:
            stored = self.attachments.store(upload)
            try:
                self.db.save_attachment(
                    post_id=post.id,
                    filename=stored.filename,
                    file_path=stored.file_path,
                    file_hash=stored.file_hash,
                    file_size=stored.file_size,
                    mime_type=stored.mime_type,
                )
            except Exception:
                self.attachments.release(stored.file_path)
                raise

    def _release(self, paths: List[str]) -> None:
        if self.attachments is None:
            return
        for path in paths:
            try:
                self.attachments.release(path)
            except AttachmentError as e:
                get_error_handler().handle_error(e, "release attachment", show_notification=False)
