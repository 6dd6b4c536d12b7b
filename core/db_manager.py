"""
Database manager for the forum core.

This module provides the DBManager class which handles all database operations
including initialization, CRUD operations, listing and statistics queries, and
transaction management.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Tuple
from contextlib import contextmanager
from sqlalchemy import create_engine, event, func, and_, or_
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.exc import IntegrityError

from core.error_handler import IntegrityViolationError, NotFoundError
from models.database import (
    Base,
    Member,
    Group,
    ForumHolder,
    ForumCategory,
    Forum,
    ForumThread,
    Post,
    PostAttachment,
    ThreadSubscription,
    ForumStatus,
    PostStatus,
)


logger = logging.getLogger(__name__)


class DBManager:
    """
    Manages database operations for the forum core.

    Provides methods for initializing the database, saving and retrieving
    data, and managing transactions with automatic rollback on errors.
    Every entity returned is detached from its session; the upward
    relationships needed by the access control evaluator are eager-loaded.
    """

    def __init__(self, db_path: Path):
        """
        Initialize the database manager.

        Args:
            db_path: Path to the SQLite database file
        """
        self.db_path = Path(db_path)
        self.engine = None
        self.SessionLocal = None

    def initialize_database(self):
        """
        Initialize the database by creating the schema if it doesn't exist.

        Creates all tables defined in the models and sets up the session factory.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        db_url = f"sqlite:///{self.db_path}"
        self.engine = create_engine(
            db_url,
            echo=False,
            connect_args={"check_same_thread": False}
        )

        # Enable foreign key constraints for SQLite
        @event.listens_for(self.engine, "connect")
        def set_sqlite_pragma(dbapi_conn, connection_record):
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        Base.metadata.create_all(self.engine)

        # expire_on_commit=False keeps returned entities usable after the session closes
        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)
        logger.info(f"Database initialized at {self.db_path}")

    @contextmanager
    def get_session(self) -> Session:
        """
        Context manager for database sessions with automatic rollback on error.

        Yields:
            Session: SQLAlchemy session object

        Example:
            with db_manager.get_session() as session:
                session.add(member)
        """
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Member operations
    # ------------------------------------------------------------------

    def create_member(self, email: str, **fields) -> Member:
        """
        Create and persist a new member.

        Args:
            email: Unique e-mail address
            **fields: Any other Member column

        Returns:
            The detached Member

        Raises:
            IntegrityError: If the e-mail is already registered
        """
        with self.get_session() as session:
            member = Member(email=email, **fields)
            session.add(member)
            session.flush()
            member_id = member.id
        return self.get_member(member_id)

    def get_member(self, member_id: int) -> Optional[Member]:
        """Fetch a single member by ID."""
        with self.get_session() as session:
            member = session.get(Member, member_id)
            if member:
                session.expunge(member)
            return member

    def get_member_by_email(self, email: str) -> Optional[Member]:
        """Fetch a single member by e-mail address."""
        with self.get_session() as session:
            member = session.query(Member).filter(Member.email == email).first()
            if member:
                session.expunge(member)
            return member

    def update_member(self, member_id: int, **fields) -> Member:
        """
        Update columns of an existing member.

        Raises:
            NotFoundError: If the member does not exist
        """
        with self.get_session() as session:
            member = session.get(Member, member_id)
            if member is None:
                raise NotFoundError(f"Member {member_id} not found")
            for key, value in fields.items():
                setattr(member, key, value)
        return self.get_member(member_id)

    def delete_member(self, member_id: int) -> bool:
        """
        Delete a member.

        Their posts are kept with the author cleared; their subscriptions,
        group memberships and moderator seats are removed.

        Returns:
            True if a member was deleted
        """
        with self.get_session() as session:
            member = session.get(Member, member_id)
            if member is None:
                return False
            session.query(Post).filter(Post.author_id == member_id).update(
                {Post.author_id: None}, synchronize_session=False
            )
            session.query(Forum).filter(Forum.moderator_id == member_id).update(
                {Forum.moderator_id: None}, synchronize_session=False
            )
            session.delete(member)
        logger.info(f"Deleted member {member_id}")
        return True

    def count_moderated_forums(self, member_id: int) -> int:
        """Number of forums the member moderates, designated or co-moderator."""
        with self.get_session() as session:
            designated = session.query(Forum.id).filter(Forum.moderator_id == member_id)
            co_moderated = session.query(Forum.id).join(Forum.moderators).filter(Member.id == member_id)
            return designated.union(co_moderated).count()

    def count_posts_by_author(self, author_id: int) -> int:
        with self.get_session() as session:
            return session.query(func.count(Post.id)).filter(Post.author_id == author_id).scalar()

    def get_posts_by_author(self, author_id: int, limit: Optional[int] = None) -> List[Post]:
        """Posts by a member, newest first."""
        with self.get_session() as session:
            query = (
                session.query(Post)
                .filter(Post.author_id == author_id)
                .order_by(Post.created_at.desc(), Post.id.desc())
            )
            if limit:
                query = query.limit(limit)
            posts = query.all()
            session.expunge_all()
            return posts

    # ------------------------------------------------------------------
    # Group operations
    # ------------------------------------------------------------------

    def create_group(self, title: str, code: str) -> Group:
        with self.get_session() as session:
            group = Group(title=title, code=code)
            session.add(group)
            session.flush()
            session.expunge(group)
            return group

    def get_group(self, group_id: int) -> Optional[Group]:
        with self.get_session() as session:
            group = session.get(Group, group_id)
            if group:
                session.expunge(group)
            return group

    def add_member_to_group(self, group_id: int, member_id: int) -> None:
        """
        Add a member to a group; adding an existing member is a no-op.

        Raises:
            NotFoundError: If the group or member does not exist
        """
        with self.get_session() as session:
            group = session.get(Group, group_id)
            member = session.get(Member, member_id)
            if group is None or member is None:
                raise NotFoundError(f"Group {group_id} or member {member_id} not found")
            if group not in member.groups:
                member.groups.append(group)

    # ------------------------------------------------------------------
    # Holder, category and forum operations
    # ------------------------------------------------------------------

    def create_holder(self, title: str, url_segment: str, **fields) -> ForumHolder:
        with self.get_session() as session:
            holder = ForumHolder(title=title, url_segment=url_segment, **fields)
            session.add(holder)
            session.flush()
            holder_id = holder.id
        return self.get_holder(holder_id)

    def get_holder(self, holder_id: int) -> Optional[ForumHolder]:
        with self.get_session() as session:
            holder = session.get(ForumHolder, holder_id)
            if holder:
                session.expunge(holder)
            return holder

    def set_holder_groups(
        self,
        holder_id: int,
        poster_group_ids: Optional[Iterable[int]] = None,
        viewer_group_ids: Optional[Iterable[int]] = None
    ) -> None:
        """Replace the poster and/or viewer groups of a holder."""
        with self.get_session() as session:
            holder = session.get(ForumHolder, holder_id)
            if holder is None:
                raise NotFoundError(f"Forum holder {holder_id} not found")
            if poster_group_ids is not None:
                holder.poster_groups = self._load_groups(session, poster_group_ids)
            if viewer_group_ids is not None:
                holder.viewer_groups = self._load_groups(session, viewer_group_ids)

    def create_category(self, holder_id: int, title: str, stackable_order: int = 1) -> ForumCategory:
        with self.get_session() as session:
            category = ForumCategory(holder_id=holder_id, title=title, stackable_order=stackable_order)
            session.add(category)
            session.flush()
            session.expunge(category)
            return category

    def get_categories(self, holder_id: int) -> List[ForumCategory]:
        """Categories of a holder, highest stackable order first."""
        with self.get_session() as session:
            categories = (
                session.query(ForumCategory)
                .filter(ForumCategory.holder_id == holder_id)
                .order_by(ForumCategory.stackable_order.desc(), ForumCategory.id.asc())
                .all()
            )
            session.expunge_all()
            return categories

    def create_forum(self, title: str, url_segment: str, holder_id: Optional[int] = None, **fields) -> Forum:
        with self.get_session() as session:
            forum = Forum(title=title, url_segment=url_segment, holder_id=holder_id, **fields)
            session.add(forum)
            session.flush()
            forum_id = forum.id
        return self.get_forum(forum_id)

    def get_forum(self, forum_id: int) -> Optional[Forum]:
        with self.get_session() as session:
            forum = session.get(Forum, forum_id)
            if forum:
                session.expunge(forum)
            return forum

    def get_forums_for_holder(self, holder_id: int, category_id: Optional[int] = None) -> List[Forum]:
        with self.get_session() as session:
            query = session.query(Forum).filter(Forum.holder_id == holder_id)
            if category_id is not None:
                query = query.filter(Forum.category_id == category_id)
            forums = query.order_by(Forum.id.asc()).all()
            session.expunge_all()
            return forums

    def update_forum(self, forum_id: int, **fields) -> Forum:
        with self.get_session() as session:
            forum = session.get(Forum, forum_id)
            if forum is None:
                raise NotFoundError(f"Forum {forum_id} not found")
            for key, value in fields.items():
                setattr(forum, key, value)
        return self.get_forum(forum_id)

    def set_forum_groups(
        self,
        forum_id: int,
        poster_group_ids: Optional[Iterable[int]] = None,
        viewer_group_ids: Optional[Iterable[int]] = None
    ) -> None:
        """Replace the poster and/or viewer groups of a forum."""
        with self.get_session() as session:
            forum = session.get(Forum, forum_id)
            if forum is None:
                raise NotFoundError(f"Forum {forum_id} not found")
            if poster_group_ids is not None:
                forum.poster_groups = self._load_groups(session, poster_group_ids)
            if viewer_group_ids is not None:
                forum.viewer_groups = self._load_groups(session, viewer_group_ids)

    def add_forum_moderator(self, forum_id: int, member_id: int) -> None:
        with self.get_session() as session:
            forum = session.get(Forum, forum_id)
            member = session.get(Member, member_id)
            if forum is None or member is None:
                raise NotFoundError(f"Forum {forum_id} or member {member_id} not found")
            if member not in forum.moderators:
                forum.moderators.append(member)

    def remove_forum_moderator(self, forum_id: int, member_id: int) -> bool:
        """Remove a co-moderator seat, clearing the designated moderator too."""
        with self.get_session() as session:
            forum = session.get(Forum, forum_id)
            if forum is None:
                raise NotFoundError(f"Forum {forum_id} not found")
            removed = False
            for member in list(forum.moderators):
                if member.id == member_id:
                    forum.moderators.remove(member)
                    removed = True
            if forum.moderator_id == member_id:
                forum.moderator_id = None
                removed = True
            return removed

    def _load_groups(self, session: Session, group_ids: Iterable[int]) -> List[Group]:
        ids = list(group_ids)
        if not ids:
            return []
        return session.query(Group).filter(Group.id.in_(ids)).all()

    # ------------------------------------------------------------------
    # Thread operations
    # ------------------------------------------------------------------

    def create_thread(
        self,
        forum_id: int,
        title: str,
        author_id: Optional[int],
        content: str,
        status: str = PostStatus.MODERATED.value
    ) -> Tuple[ForumThread, Post]:
        """
        Create a thread together with its first post in one transaction.

        Returns:
            Tuple of the detached thread and first post

        Raises:
            NotFoundError: If the forum does not exist
        """
        with self.get_session() as session:
            if session.get(Forum, forum_id) is None:
                raise NotFoundError(f"Forum {forum_id} not found")
            thread = ForumThread(forum_id=forum_id, title=title)
            session.add(thread)
            session.flush()
            post = Post(
                thread_id=thread.id,
                forum_id=forum_id,
                author_id=author_id,
                content=content,
                status=status,
                is_first_post=True,
            )
            session.add(post)
            session.flush()
            thread_id, post_id = thread.id, post.id
        return self.get_thread(thread_id), self.get_post(post_id)

    def get_thread(self, thread_id: int) -> Optional[ForumThread]:
        with self.get_session() as session:
            thread = session.get(ForumThread, thread_id)
            if thread:
                session.expunge(thread)
            return thread

    def update_thread(self, thread_id: int, **fields) -> ForumThread:
        """
        Update flag or title columns of a thread.

        Use reparent_thread to change the owning forum.
        """
        if "forum_id" in fields:
            raise ValueError("Use reparent_thread to move a thread")
        with self.get_session() as session:
            thread = session.get(ForumThread, thread_id)
            if thread is None:
                raise NotFoundError(f"Thread {thread_id} not found")
            for key, value in fields.items():
                setattr(thread, key, value)
        return self.get_thread(thread_id)

    def delete_thread(self, thread_id: int) -> List[str]:
        """
        Delete a thread with its posts, attachments and subscriptions.

        Returns:
            Stored attachment paths that should now be released

        Raises:
            IntegrityViolationError: If posts of the thread would survive it
        """
        with self.get_session() as session:
            thread = session.get(ForumThread, thread_id)
            if thread is None:
                return []
            released = [
                attachment.file_path
                for post in thread.posts
                for attachment in post.attachments
            ]
            try:
                session.delete(thread)
                session.flush()
            except IntegrityError as e:
                raise IntegrityViolationError(f"Deleting thread {thread_id} failed: {e}") from e

            orphans = session.query(func.count(Post.id)).filter(Post.thread_id == thread_id).scalar()
            if orphans:
                raise IntegrityViolationError(
                    f"Deleting thread {thread_id} would leave {orphans} orphaned posts"
                )
        logger.info(f"Deleted thread {thread_id} and {len(released)} attachments")
        return released

    def increment_thread_views(self, thread_id: int) -> bool:
        """
        Atomically add one to a thread's view counter.

        Returns:
            True if the thread exists
        """
        with self.get_session() as session:
            updated = (
                session.query(ForumThread)
                .filter(ForumThread.id == thread_id)
                .update({ForumThread.num_views: ForumThread.num_views + 1}, synchronize_session=False)
            )
            return updated > 0

    def reparent_thread(self, thread_id: int, forum_id: int) -> ForumThread:
        """
        Move a thread to another forum, updating every post's forum reference.

        Raises:
            NotFoundError: If the thread or target forum does not exist
            IntegrityViolationError: If any post would keep the old forum reference
        """
        with self.get_session() as session:
            thread = session.get(ForumThread, thread_id)
            if thread is None:
                raise NotFoundError(f"Thread {thread_id} not found")
            if session.get(Forum, forum_id) is None:
                raise NotFoundError(f"Forum {forum_id} not found")

            thread.forum_id = forum_id
            session.query(Post).filter(Post.thread_id == thread_id).update(
                {Post.forum_id: forum_id}, synchronize_session=False
            )
            session.flush()

            stale = (
                session.query(func.count(Post.id))
                .filter(Post.thread_id == thread_id, Post.forum_id != forum_id)
                .scalar()
            )
            if stale:
                raise IntegrityViolationError(
                    f"Moving thread {thread_id} left {stale} posts in the old forum"
                )
        return self.get_thread(thread_id)

    # ------------------------------------------------------------------
    # Post operations
    # ------------------------------------------------------------------

    def add_post(
        self,
        thread_id: int,
        author_id: Optional[int],
        content: str,
        status: str = PostStatus.MODERATED.value
    ) -> Post:
        """
        Add a post to a thread.

        The post inherits the thread's forum and is flagged as the first post
        when it holds the lowest ID in the thread.

        Raises:
            NotFoundError: If the thread does not exist
        """
        with self.get_session() as session:
            thread = session.get(ForumThread, thread_id)
            if thread is None:
                raise NotFoundError(f"Thread {thread_id} not found")
            post = Post(
                thread_id=thread_id,
                forum_id=thread.forum_id,
                author_id=author_id,
                content=content,
                status=status,
            )
            session.add(post)
            session.flush()
            first_id = session.query(func.min(Post.id)).filter(Post.thread_id == thread_id).scalar()
            post.is_first_post = post.id == first_id
            post_id = post.id
        return self.get_post(post_id)

    def get_post(self, post_id: int) -> Optional[Post]:
        with self.get_session() as session:
            post = session.get(Post, post_id)
            if post:
                session.expunge(post)
            return post

    def get_posts_for_thread(
        self,
        thread_id: int,
        statuses: Optional[Iterable[str]] = None
    ) -> List[Post]:
        """
        Retrieve posts of a thread ordered by creation time, then ID.

        Args:
            thread_id: Thread identifier
            statuses: Optional status values to restrict to
        """
        with self.get_session() as session:
            query = session.query(Post).filter(Post.thread_id == thread_id)
            if statuses is not None:
                query = query.filter(Post.status.in_(list(statuses)))
            posts = query.order_by(Post.created_at.asc(), Post.id.asc()).all()
            session.expunge_all()
            return posts

    def update_post(self, post_id: int, **fields) -> Post:
        with self.get_session() as session:
            post = session.get(Post, post_id)
            if post is None:
                raise NotFoundError(f"Post {post_id} not found")
            for key, value in fields.items():
                setattr(post, key, value)
        return self.get_post(post_id)

    def delete_post(self, post_id: int) -> List[str]:
        """
        Delete a single post and its attachments.

        When the deleted post was the first post the flag moves to the
        next-lowest ID in the thread.

        Returns:
            Stored attachment paths that should now be released
        """
        with self.get_session() as session:
            post = session.get(Post, post_id)
            if post is None:
                return []
            thread_id = post.thread_id
            was_first = post.is_first_post
            released = [attachment.file_path for attachment in post.attachments]
            session.delete(post)
            session.flush()

            if was_first:
                successor = (
                    session.query(Post)
                    .filter(Post.thread_id == thread_id)
                    .order_by(Post.id.asc())
                    .first()
                )
                if successor is not None:
                    successor.is_first_post = True
        logger.info(f"Deleted post {post_id}")
        return released

    def get_first_post(self, thread_id: int) -> Optional[Post]:
        with self.get_session() as session:
            post = (
                session.query(Post)
                .filter(Post.thread_id == thread_id)
                .order_by(Post.id.asc())
                .first()
            )
            if post:
                session.expunge(post)
            return post

    def get_latest_post(self, thread_id: int, statuses: Optional[Iterable[str]] = None) -> Optional[Post]:
        with self.get_session() as session:
            query = session.query(Post).filter(Post.thread_id == thread_id)
            if statuses is not None:
                query = query.filter(Post.status.in_(list(statuses)))
            post = query.order_by(Post.created_at.desc(), Post.id.desc()).first()
            if post:
                session.expunge(post)
            return post

    def count_posts_in_thread(self, thread_id: int, statuses: Optional[Iterable[str]] = None) -> int:
        with self.get_session() as session:
            query = session.query(func.count(Post.id)).filter(Post.thread_id == thread_id)
            if statuses is not None:
                query = query.filter(Post.status.in_(list(statuses)))
            return query.scalar()

    def count_posts_before(self, thread_id: int, post_id: int, status: str = PostStatus.MODERATED.value) -> int:
        """Number of posts with the given status and a lower ID in the thread."""
        with self.get_session() as session:
            return (
                session.query(func.count(Post.id))
                .filter(Post.thread_id == thread_id, Post.id < post_id, Post.status == status)
                .scalar()
            )

    # ------------------------------------------------------------------
    # Attachment operations
    # ------------------------------------------------------------------

    def save_attachment(
        self,
        post_id: int,
        filename: str,
        file_path: str,
        file_hash: str,
        file_size: int,
        mime_type: str
    ) -> PostAttachment:
        with self.get_session() as session:
            attachment = PostAttachment(
                post_id=post_id,
                filename=filename,
                file_path=file_path,
                file_hash=file_hash,
                file_size=file_size,
                mime_type=mime_type,
            )
            session.add(attachment)
            session.flush()
            session.expunge(attachment)
            return attachment

    def get_attachments_for_post(self, post_id: int) -> List[PostAttachment]:
        with self.get_session() as session:
            attachments = (
                session.query(PostAttachment)
                .filter(PostAttachment.post_id == post_id)
                .order_by(PostAttachment.id.asc())
                .all()
            )
            session.expunge_all()
            return attachments

    def get_attachment(self, attachment_id: int) -> Optional[PostAttachment]:
        with self.get_session() as session:
            attachment = session.get(PostAttachment, attachment_id)
            if attachment:
                session.expunge(attachment)
            return attachment

    def delete_attachment(self, attachment_id: int) -> Optional[str]:
        """Delete an attachment row and return its stored path."""
        with self.get_session() as session:
            attachment = session.get(PostAttachment, attachment_id)
            if attachment is None:
                return None
            path = attachment.file_path
            session.delete(attachment)
            return path

    # ------------------------------------------------------------------
    # Subscription operations
    # ------------------------------------------------------------------

    def add_subscription(self, thread_id: int, member_id: int) -> ThreadSubscription:
        """
        Subscribe a member to a thread.

        Idempotent: an existing subscription is returned unchanged, including
        when a concurrent insert wins the unique constraint.
        """
        existing = self.get_subscription(thread_id, member_id)
        if existing is not None:
            return existing
        try:
            with self.get_session() as session:
                subscription = ThreadSubscription(thread_id=thread_id, member_id=member_id)
                session.add(subscription)
        except IntegrityError:
            existing = self.get_subscription(thread_id, member_id)
            if existing is None:
                raise
            logger.debug(f"Subscription {thread_id}/{member_id} created concurrently")
            return existing
        return self.get_subscription(thread_id, member_id)

    def get_subscription(self, thread_id: int, member_id: int) -> Optional[ThreadSubscription]:
        with self.get_session() as session:
            subscription = (
                session.query(ThreadSubscription)
                .filter(
                    ThreadSubscription.thread_id == thread_id,
                    ThreadSubscription.member_id == member_id,
                )
                .first()
            )
            if subscription:
                session.expunge(subscription)
            return subscription

    def remove_subscription(self, thread_id: int, member_id: int) -> bool:
        with self.get_session() as session:
            deleted = (
                session.query(ThreadSubscription)
                .filter(
                    ThreadSubscription.thread_id == thread_id,
                    ThreadSubscription.member_id == member_id,
                )
                .delete(synchronize_session=False)
            )
            return deleted > 0

    def get_subscriptions_for_thread(self, thread_id: int) -> List[ThreadSubscription]:
        with self.get_session() as session:
            subscriptions = (
                session.query(ThreadSubscription)
                .filter(ThreadSubscription.thread_id == thread_id)
                .order_by(ThreadSubscription.id.asc())
                .all()
            )
            session.expunge_all()
            return subscriptions

    def mark_subscription_sent(self, subscription_id: int, sent_at: Optional[datetime] = None) -> None:
        with self.get_session() as session:
            session.query(ThreadSubscription).filter(ThreadSubscription.id == subscription_id).update(
                {ThreadSubscription.last_sent: sent_at or datetime.utcnow()},
                synchronize_session=False
            )

    # ------------------------------------------------------------------
    # Listings and statistics
    # ------------------------------------------------------------------

    def _latest_post_subquery(self, session: Session, forum_id: Optional[int], statuses: Iterable[str]):
        query = (
            session.query(
                Post.thread_id.label("thread_id"),
                func.max(Post.created_at).label("last_created"),
                func.max(Post.id).label("last_id"),
            )
            .filter(Post.status.in_(list(statuses)))
        )
        if forum_id is not None:
            query = query.filter(Post.forum_id == forum_id)
        return query.group_by(Post.thread_id).subquery()

    def get_topics(
        self,
        forum_id: int,
        statuses: Iterable[str],
        start: int = 0,
        limit: Optional[int] = None
    ) -> List[ForumThread]:
        """
        Non-sticky threads of a forum that have posts in the given statuses.

        Ordered by the latest post's creation time, then the latest post ID,
        newest first.
        """
        with self.get_session() as session:
            latest = self._latest_post_subquery(session, forum_id, statuses)
            query = (
                session.query(ForumThread)
                .join(latest, latest.c.thread_id == ForumThread.id)
                .filter(
                    ForumThread.forum_id == forum_id,
                    ForumThread.is_sticky.is_(False),
                    ForumThread.is_global_sticky.is_(False),
                )
                .order_by(latest.c.last_created.desc(), latest.c.last_id.desc())
                .offset(start)
            )
            if limit:
                query = query.limit(limit)
            threads = query.all()
            session.expunge_all()
            return threads

    def get_sticky_topics(
        self,
        forum_id: int,
        global_forum_ids: Optional[Iterable[int]] = None
    ) -> List[ForumThread]:
        """
        Sticky threads of a forum, plus global stickies from the given forums.

        Ordered by latest post creation time, newest first.
        """
        with self.get_session() as session:
            latest = (
                session.query(
                    Post.thread_id.label("thread_id"),
                    func.max(Post.created_at).label("last_created"),
                )
                .group_by(Post.thread_id)
                .subquery()
            )
            condition = and_(ForumThread.forum_id == forum_id, ForumThread.is_sticky.is_(True))
            if global_forum_ids is not None:
                ids = list(global_forum_ids)
                if ids:
                    condition = or_(
                        condition,
                        and_(ForumThread.is_global_sticky.is_(True), ForumThread.forum_id.in_(ids)),
                    )
            threads = (
                session.query(ForumThread)
                .outerjoin(latest, latest.c.thread_id == ForumThread.id)
                .filter(condition)
                .order_by(latest.c.last_created.desc(), ForumThread.id.desc())
                .all()
            )
            session.expunge_all()
            return threads

    def get_global_sticky_threads(self, forum_ids: Iterable[int]) -> List[ForumThread]:
        ids = list(forum_ids)
        if not ids:
            return []
        with self.get_session() as session:
            threads = (
                session.query(ForumThread)
                .filter(ForumThread.is_global_sticky.is_(True), ForumThread.forum_id.in_(ids))
                .order_by(ForumThread.id.desc())
                .all()
            )
            session.expunge_all()
            return threads

    def _normal_author_posts(self, session: Session, forum_ids: Iterable[int]):
        return (
            session.query(Post)
            .join(Member, Member.id == Post.author_id)
            .filter(Post.forum_id.in_(list(forum_ids)), Member.forum_status == ForumStatus.NORMAL.value)
        )

    def count_posts(self, forum_ids: Iterable[int]) -> int:
        """Posts in the given forums written by members in Normal standing."""
        with self.get_session() as session:
            return self._normal_author_posts(session, forum_ids).count()

    def count_topics(self, forum_ids: Iterable[int]) -> int:
        """Threads in the given forums with at least one post by a Normal member."""
        with self.get_session() as session:
            return (
                self._normal_author_posts(session, forum_ids)
                .with_entities(func.count(func.distinct(Post.thread_id)))
                .scalar()
            )

    def count_authors(self, forum_ids: Iterable[int]) -> int:
        """Distinct Normal members who posted in the given forums."""
        with self.get_session() as session:
            return (
                self._normal_author_posts(session, forum_ids)
                .with_entities(func.count(func.distinct(Post.author_id)))
                .scalar()
            )

    def get_recent_posts(
        self,
        forum_ids: Iterable[int],
        limit: int = 50,
        thread_id: Optional[int] = None,
        since: Optional[datetime] = None,
        after_id: Optional[int] = None,
        statuses: Optional[Iterable[str]] = None
    ) -> List[Post]:
        """Posts in the given forums, newest ID first."""
        ids = list(forum_ids)
        if not ids:
            return []
        with self.get_session() as session:
            query = self._recent_posts_query(session, ids, thread_id, since, after_id, statuses)
            posts = query.order_by(Post.id.desc()).limit(limit).all()
            session.expunge_all()
            return posts

    def latest_post_marker(
        self,
        forum_ids: Iterable[int],
        thread_id: Optional[int] = None,
        since: Optional[datetime] = None,
        after_id: Optional[int] = None,
        statuses: Optional[Iterable[str]] = None
    ) -> Tuple[Optional[int], Optional[datetime]]:
        """ID and creation time of the newest matching post, or (None, None)."""
        ids = list(forum_ids)
        if not ids:
            return None, None
        with self.get_session() as session:
            query = self._recent_posts_query(session, ids, thread_id, since, after_id, statuses)
            row = query.with_entities(func.max(Post.id), func.max(Post.created_at)).one()
            return row[0], row[1]

    def _recent_posts_query(self, session, forum_ids, thread_id, since, after_id, statuses):
        query = session.query(Post).filter(Post.forum_id.in_(forum_ids))
        if thread_id is not None:
            query = query.filter(Post.thread_id == thread_id)
        if since is not None:
            query = query.filter(Post.created_at > since)
        if after_id:
            query = query.filter(Post.id > after_id)
        if statuses is not None:
            query = query.filter(Post.status.in_(list(statuses)))
        return query

    def get_popular_threads(
        self,
        forum_ids: Iterable[int],
        by: str = "posts",
        start: int = 0,
        limit: int = 20
    ) -> List[Tuple[ForumThread, int]]:
        """
        Threads ranked by number of posts or by views.

        Returns:
            (thread, score) pairs, highest score first
        """
        ids = list(forum_ids)
        if not ids:
            return []
        with self.get_session() as session:
            if by == "views":
                rows = (
                    session.query(ForumThread, ForumThread.num_views)
                    .filter(ForumThread.forum_id.in_(ids))
                    .order_by(ForumThread.num_views.desc(), ForumThread.id.desc())
                )
            elif by == "posts":
                post_count = func.count(Post.id).label("post_count")
                rows = (
                    session.query(ForumThread, post_count)
                    .join(Post, Post.thread_id == ForumThread.id)
                    .filter(ForumThread.forum_id.in_(ids))
                    .group_by(ForumThread.id)
                    .order_by(post_count.desc(), ForumThread.id.desc())
                )
            else:
                raise ValueError(f"Unknown popularity measure: {by}")
            result = [(thread, score) for thread, score in rows.offset(start).limit(limit).all()]
            session.expunge_all()
            return result

    def monthly_post_counts(self) -> List[Tuple[str, int]]:
        """(YYYY-MM, number of posts) pairs, newest month first."""
        with self.get_session() as session:
            month = func.strftime('%Y-%m', Post.created_at).label("month")
            rows = (
                session.query(month, func.count(Post.id))
                .group_by(month)
                .order_by(month.desc())
                .all()
            )
            return [(row[0], row[1]) for row in rows]

    def monthly_signup_counts(self) -> List[Tuple[str, int]]:
        """(YYYY-MM, number of new members) pairs, newest month first."""
        with self.get_session() as session:
            month = func.strftime('%Y-%m', Member.created_at).label("month")
            rows = (
                session.query(month, func.count(Member.id))
                .group_by(month)
                .order_by(month.desc())
                .all()
            )
            return [(row[0], row[1]) for row in rows]
