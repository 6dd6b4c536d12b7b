"""
Forum Manager for the forum core

Manages forum holders, categories and forums, and answers the listing and
statistics queries shown on forum pages: topics, sticky topics, global
announcements, recent and popular posts, and post/topic/author counts.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple

from core.db_manager import DBManager
from core.error_handler import NotFoundError, PermissionDeniedError
from logic import access_control
from models.database import (
    CanPostType,
    CanViewType,
    Forum,
    ForumCategory,
    ForumHolder,
    ForumThread,
    Member,
    Post,
    PostStatus,
)


logger = logging.getLogger(__name__)


HOLDER_POST_TYPES = [t.value for t in CanPostType if t != CanPostType.INHERIT]
HOLDER_VIEW_TYPES = [t.value for t in CanViewType if t != CanViewType.INHERIT]


@dataclass
class NewPostsStatus:
    """Whether new posts exist since a visit, and the newest one's marker."""
    available: bool
    last_id: Optional[int] = None
    last_created: Optional[datetime] = None


class ForumManager:
    """
    Manages forum structure and listings.

    Responsibilities:
    - Create holders, categories and forums (admins only)
    - List the forums, topics and announcements a viewer may see
    - Count posts, topics and authors of forums and holders
    - Find recent and popular content
    """

    def __init__(
        self,
        db_manager: DBManager,
        recent_posts_limit: int = 50,
        popular_threads_limit: int = 20
    ):
        """
        Initialize ForumManager.

        Args:
            db_manager: DBManager instance for database operations
            recent_posts_limit: Default size of recent post listings
            popular_threads_limit: Default size of popular thread listings
        """
        self.db = db_manager
        self.recent_posts_limit = recent_posts_limit
        self.popular_threads_limit = popular_threads_limit

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def create_holder(self, title: str, url_segment: str, admin: Optional[Member], **settings) -> ForumHolder:
        """
        Create a forum holder.

        Args:
            title: Holder title
            url_segment: URL segment used in links
            admin: Acting administrator
            **settings: Other ForumHolder columns (policies, display options)

        Returns:
            ForumHolder: Created holder

        Raises:
            PermissionDeniedError: If ``admin`` is not an administrator
            ValueError: If a field is invalid
        """
        self._require_admin(admin)
        self._validate_title(title, url_segment)
        if settings.get("can_post_type", CanPostType.LOGGED_IN_USERS.value) not in HOLDER_POST_TYPES:
            raise ValueError(f"Invalid post policy for a holder: {settings['can_post_type']}")
        if settings.get("can_view_type", CanViewType.ANYONE.value) not in HOLDER_VIEW_TYPES:
            raise ValueError(f"Invalid view policy for a holder: {settings['can_view_type']}")

        holder = self.db.create_holder(title, url_segment, **settings)
        logger.info(f"Created forum holder '{title}' with ID {holder.id}")
        return holder

    def create_category(self, holder_id: int, title: str, admin: Optional[Member], stackable_order: int = 1) -> ForumCategory:
        """
        Create a forum category; higher ``stackable_order`` (1-99) lists first.

        Raises:
            PermissionDeniedError: If ``admin`` is not an administrator
            NotFoundError: If the holder does not exist
            ValueError: If the title or order is invalid
        """
        self._require_admin(admin)
        if not title or len(title) > 100:
            raise ValueError("Category title must be 1-100 characters")
        if not 1 <= stackable_order <= 99:
            raise ValueError("Category order must be between 1 and 99")
        if self.db.get_holder(holder_id) is None:
            raise NotFoundError(f"Forum holder {holder_id} not found")

        category = self.db.create_category(holder_id, title, stackable_order)
        logger.info(f"Created category '{title}' in holder {holder_id}")
        return category

    def create_forum(
        self,
        title: str,
        url_segment: str,
        admin: Optional[Member],
        holder_id: Optional[int] = None,
        **settings
    ) -> Forum:
        """
        Create a forum, optionally below a holder.

        Raises:
            PermissionDeniedError: If ``admin`` is not an administrator
            NotFoundError: If the holder or category does not exist
            ValueError: If a field is invalid
        """
        self._require_admin(admin)
        self._validate_title(title, url_segment)
        if settings.get("can_post_type", CanPostType.INHERIT.value) not in [t.value for t in CanPostType]:
            raise ValueError(f"Invalid post policy: {settings['can_post_type']}")
        if settings.get("can_view_type", CanViewType.INHERIT.value) not in [t.value for t in CanViewType]:
            raise ValueError(f"Invalid view policy: {settings['can_view_type']}")
        if holder_id is not None and self.db.get_holder(holder_id) is None:
            raise NotFoundError(f"Forum holder {holder_id} not found")

        forum = self.db.create_forum(title, url_segment, holder_id=holder_id, **settings)
        logger.info(f"Created forum '{title}' with ID {forum.id}")
        return forum

    def get_holder(self, holder_id: int, viewer: Optional[Member] = None) -> Optional[ForumHolder]:
        """Holder by ID, or None when missing or hidden from ``viewer``."""
        holder = self.db.get_holder(holder_id)
        if holder is None or not access_control.holder_can_view(holder, viewer):
            return None
        return holder

    def get_forum(self, forum_id: int, viewer: Optional[Member] = None) -> Optional[Forum]:
        """Forum by ID, or None when missing or hidden from ``viewer``."""
        forum = self.db.get_forum(forum_id)
        if forum is None or not access_control.can_view(forum, viewer):
            return None
        return forum

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def forums_for_holder(
        self,
        holder_id: int,
        viewer: Optional[Member],
        category_id: Optional[int] = None
    ) -> List[Forum]:
        """
        Forums of a holder that ``viewer`` may see.

        When the holder shows categories the forums come in category order.
        """
        holder = self.db.get_holder(holder_id)
        if holder is None:
            return []
        if self._shows_categories(holder) and category_id is None:
            return [forum for _, forums in self.forums_by_category(holder_id, viewer) for forum in forums]
        forums = self.db.get_forums_for_holder(holder_id, category_id=category_id)
        return [forum for forum in forums if access_control.can_view(forum, viewer)]

    def forums_by_category(
        self,
        holder_id: int,
        viewer: Optional[Member]
    ) -> List[Tuple[ForumCategory, List[Forum]]]:
        """Visible forums grouped by category; categories without visible forums are left out."""
        grouped = []
        for category in self.db.get_categories(holder_id):
            forums = [
                forum for forum in self.db.get_forums_for_holder(holder_id, category_id=category.id)
                if access_control.can_view(forum, viewer)
            ]
            if forums:
                grouped.append((category, forums))
        return grouped

    def get_topics(
        self,
        forum_id: int,
        viewer: Optional[Member],
        start: int = 0,
        limit: Optional[int] = None
    ) -> List[ForumThread]:
        """
        Non-sticky threads of a forum, most recently active first.

        Only threads with posts ``viewer`` may see are listed.
        """
        forum = self.get_forum(forum_id, viewer)
        if forum is None:
            return []
        return self.db.get_topics(forum_id, self._visible_statuses(forum, viewer), start=start, limit=limit)

    def get_sticky_topics(
        self,
        forum_id: int,
        viewer: Optional[Member] = None,
        include_global: bool = True
    ) -> List[ForumThread]:
        """Sticky threads of a forum, plus global stickies from sibling forums."""
        forum = self.get_forum(forum_id, viewer)
        if forum is None:
            return []
        global_ids = None
        if include_global:
            global_ids = self._sibling_forum_ids(forum, viewer)
        return self.db.get_sticky_topics(forum_id, global_forum_ids=global_ids)

    def global_announcements(self, holder_id: int, viewer: Optional[Member]) -> List[ForumThread]:
        """Global sticky threads in the holder's forums that ``viewer`` may see."""
        forum_ids = self._visible_forum_ids(holder_id, viewer)
        return self.db.get_global_sticky_threads(forum_ids)

    def recent_posts(
        self,
        holder_id: int,
        viewer: Optional[Member],
        limit: Optional[int] = None,
        forum_id: Optional[int] = None,
        thread_id: Optional[int] = None,
        since: Optional[datetime] = None,
        after_id: Optional[int] = None
    ) -> List[Post]:
        """
        Latest posts across a holder, newest first.

        Args:
            holder_id: Holder whose forums are searched
            viewer: Member the listing is for
            limit: Maximum number of posts (configured default when omitted)
            forum_id: Restrict to one forum
            thread_id: Restrict to one thread
            since: Only posts created after this time
            after_id: Only posts with a higher ID
        """
        forum_ids = self._scoped_forum_ids(holder_id, viewer, forum_id)
        posts = self.db.get_recent_posts(
            forum_ids,
            limit=limit or self.recent_posts_limit,
            thread_id=thread_id,
            since=since,
            after_id=after_id,
            statuses=[PostStatus.MODERATED.value],
        )
        return [post for post in posts if access_control.can_view_post(post, viewer)]

    def new_posts_available(
        self,
        holder_id: int,
        viewer: Optional[Member] = None,
        last_visit: Optional[datetime] = None,
        last_post_id: Optional[int] = None,
        forum_id: Optional[int] = None,
        thread_id: Optional[int] = None
    ) -> NewPostsStatus:
        """
        Whether posts newer than the viewer's last visit or last read post exist.

        Without either marker any post counts as new.
        """
        forum_ids = self._scoped_forum_ids(holder_id, viewer, forum_id)
        last_id, last_created = self.db.latest_post_marker(
            forum_ids,
            thread_id=thread_id,
            since=last_visit,
            after_id=last_post_id,
            statuses=[PostStatus.MODERATED.value],
        )
        return NewPostsStatus(available=last_id is not None, last_id=last_id, last_created=last_created)

    def popular_threads(
        self,
        holder_id: int,
        viewer: Optional[Member] = None,
        by: str = "posts",
        start: int = 0,
        limit: Optional[int] = None
    ) -> List[Tuple[ForumThread, int]]:
        """
        Threads ranked by post count (``by="posts"``) or views (``by="views"``).

        Returns:
            (thread, score) pairs, highest score first
        """
        if by not in ("posts", "views"):
            raise ValueError(f"Unknown popularity measure: {by}")
        forum_ids = self._visible_forum_ids(holder_id, viewer)
        return self.db.get_popular_threads(forum_ids, by=by, start=start, limit=limit or self.popular_threads_limit)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def num_posts(self, forum_id: Optional[int] = None, holder_id: Optional[int] = None) -> int:
        """Posts by members in Normal standing, in one forum or across a holder."""
        return self.db.count_posts(self._stat_forum_ids(forum_id, holder_id))

    def num_topics(self, forum_id: Optional[int] = None, holder_id: Optional[int] = None) -> int:
        return self.db.count_topics(self._stat_forum_ids(forum_id, holder_id))

    def num_authors(self, forum_id: Optional[int] = None, holder_id: Optional[int] = None) -> int:
        return self.db.count_authors(self._stat_forum_ids(forum_id, holder_id))

    def holder_stats(self, holder_id: int) -> dict:
        """Post, topic and author counts of a holder."""
        if self.db.get_holder(holder_id) is None:
            raise NotFoundError(f"Forum holder {holder_id} not found")
        return {
            "posts": self.num_posts(holder_id=holder_id),
            "topics": self.num_topics(holder_id=holder_id),
            "authors": self.num_authors(holder_id=holder_id),
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_admin(self, member: Optional[Member]) -> None:
        if member is None or not member.is_admin:
            raise PermissionDeniedError("Only administrators may change the forum structure")

    def _validate_title(self, title: str, url_segment: str) -> None:
        if not title or not title.strip():
            raise ValueError("Title cannot be empty")
        if not url_segment or "/" in url_segment:
            raise ValueError("URL segment must be a non-empty path segment")

    def _shows_categories(self, holder: ForumHolder) -> bool:
        return bool(holder.show_in_categories) and bool(self.db.get_categories(holder.id))

    def _visible_statuses(self, forum: Forum, viewer: Optional[Member]) -> List[str]:
        statuses = [PostStatus.MODERATED.value]
        if access_control.can_see_awaiting(forum, viewer):
            statuses.append(PostStatus.AWAITING.value)
        return statuses

    def _visible_forum_ids(self, holder_id: int, viewer: Optional[Member]) -> List[int]:
        return [
            forum.id for forum in self.db.get_forums_for_holder(holder_id)
            if access_control.can_view(forum, viewer)
        ]

    def _sibling_forum_ids(self, forum: Forum, viewer: Optional[Member]) -> List[int]:
        if forum.holder_id is None:
            return [forum.id]
        return self._visible_forum_ids(forum.holder_id, viewer)

    def _scoped_forum_ids(self, holder_id: int, viewer: Optional[Member], forum_id: Optional[int]) -> List[int]:
        forum_ids = self._visible_forum_ids(holder_id, viewer)
        if forum_id is not None:
            forum_ids = [fid for fid in forum_ids if fid == forum_id]
        return forum_ids

    def _stat_forum_ids(self, forum_id: Optional[int], holder_id: Optional[int]) -> List[int]:
        if (forum_id is None) == (holder_id is None):
            raise ValueError("Pass exactly one of forum_id or holder_id")
        if forum_id is not None:
            return [forum_id]
        return [forum.id for forum in self.db.get_forums_for_holder(holder_id)]
