"""
SQLAlchemy database models for the forum core.

This module defines all database models including ForumHolder, ForumCategory,
Forum, ForumThread, Post, PostAttachment, Member, Group and ThreadSubscription,
together with the status enumerations stored on them.
"""

from datetime import date, datetime
from enum import Enum
from typing import Iterable, Optional

from sqlalchemy import (
    Column, String, Integer, DateTime, Date, Boolean, Text, ForeignKey,
    Table, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class ForumStatus(str, Enum):
    """Forum standing of a member."""
    NORMAL = "Normal"
    BANNED = "Banned"
    GHOST = "Ghost"


class CanPostType(str, Enum):
    """Who may post to a forum or forum holder."""
    INHERIT = "Inherit"
    ANYONE = "Anyone"
    LOGGED_IN_USERS = "LoggedInUsers"
    ONLY_THESE_USERS = "OnlyTheseUsers"
    NO_ONE = "NoOne"


class CanViewType(str, Enum):
    """Who may view a forum or forum holder."""
    INHERIT = "Inherit"
    ANYONE = "Anyone"
    LOGGED_IN_USERS = "LoggedInUsers"
    ONLY_THESE_USERS = "OnlyTheseUsers"


class PostStatus(str, Enum):
    """Moderation status of a post."""
    AWAITING = "Awaiting"
    MODERATED = "Moderated"
    REJECTED = "Rejected"
    ARCHIVED = "Archived"


DEFAULT_FORUM_RANK = "Community Member"
ANONYMOUS_NAME = "Anonymous User"


group_members = Table(
    "group_members",
    Base.metadata,
    Column("group_id", Integer, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
    Column("member_id", Integer, ForeignKey("members.id", ondelete="CASCADE"), primary_key=True),
)

forum_moderators = Table(
    "forum_moderators",
    Base.metadata,
    Column("forum_id", Integer, ForeignKey("forums.id", ondelete="CASCADE"), primary_key=True),
    Column("member_id", Integer, ForeignKey("members.id", ondelete="CASCADE"), primary_key=True),
)

forum_poster_groups = Table(
    "forum_poster_groups",
    Base.metadata,
    Column("forum_id", Integer, ForeignKey("forums.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", Integer, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)

forum_viewer_groups = Table(
    "forum_viewer_groups",
    Base.metadata,
    Column("forum_id", Integer, ForeignKey("forums.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", Integer, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)

holder_poster_groups = Table(
    "holder_poster_groups",
    Base.metadata,
    Column("holder_id", Integer, ForeignKey("forum_holders.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", Integer, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)

holder_viewer_groups = Table(
    "holder_viewer_groups",
    Base.metadata,
    Column("holder_id", Integer, ForeignKey("forum_holders.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", Integer, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True),
)


class Group(Base):
    """A named set of members used by OnlyTheseUsers policies."""
    __tablename__ = 'groups'

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    code = Column(String, nullable=False, unique=True)

    members = relationship("Member", secondary=group_members, back_populates="groups")

    def __repr__(self):
        return f"<Group(id={self.id}, code={self.code})>"


class Member(Base):
    """
    Represents a forum member and their forum-specific standing.

    A member carries a ``forum_status`` (Normal, Banned or Ghost), an optional
    suspension date and the global administrator flag. Profile fields each
    have a ``*_public`` flag deciding whether other members may see them.
    """
    __tablename__ = 'members'

    id = Column(Integer, primary_key=True)
    email = Column(String, nullable=False, unique=True)
    first_name = Column(String, nullable=True)
    surname = Column(String, nullable=True)
    nickname = Column(String, nullable=True, index=True)
    occupation = Column(String, nullable=True)
    company = Column(String, nullable=True)
    city = Column(String, nullable=True)
    country = Column(String, nullable=True)
    signature = Column(Text, nullable=True)
    avatar_url = Column(String, nullable=True)
    first_name_public = Column(Boolean, default=False, nullable=False)
    surname_public = Column(Boolean, default=False, nullable=False)
    occupation_public = Column(Boolean, default=False, nullable=False)
    company_public = Column(Boolean, default=False, nullable=False)
    city_public = Column(Boolean, default=False, nullable=False)
    country_public = Column(Boolean, default=False, nullable=False)
    email_public = Column(Boolean, default=False, nullable=False)
    forum_rank = Column(String, default=DEFAULT_FORUM_RANK, nullable=False)
    forum_status = Column(String, default=ForumStatus.NORMAL.value, nullable=False)
    suspended_until = Column(Date, nullable=True)
    is_admin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_viewed = Column(DateTime, nullable=True)

    # Relationships
    groups = relationship("Group", secondary=group_members, back_populates="members", lazy="selectin")
    moderated_forums = relationship("Forum", secondary=forum_moderators, back_populates="moderators")
    subscriptions = relationship("ThreadSubscription", back_populates="member", cascade="all, delete-orphan")

    @property
    def display_name(self) -> str:
        """Nickname, else the public first name, else "Anonymous User"."""
        if self.nickname:
            return self.nickname
        if self.first_name_public and self.first_name:
            return self.first_name
        return ANONYMOUS_NAME

    def is_suspended(self, today: Optional[date] = None) -> bool:
        """Date-only comparison against ``suspended_until``."""
        if not self.suspended_until:
            return False
        today = today or date.today()
        return today < self.suspended_until

    def is_banned(self) -> bool:
        return self.forum_status == ForumStatus.BANNED

    def is_ghost(self) -> bool:
        return self.forum_status == ForumStatus.GHOST

    def in_any_group(self, group_ids: Iterable[int]) -> bool:
        wanted = set(group_ids)
        return any(group.id in wanted for group in self.groups)

    def __repr__(self):
        return f"<Member(id={self.id}, status={self.forum_status})>"


class ForumHolder(Base):
    """
    Container of forums.

    The holder supplies the view and post policies that forums with an
    ``Inherit`` policy resolve to, and the site-wide forum settings such as
    forbidden words and gravatar support.
    """
    __tablename__ = 'forum_holders'

    id = Column(Integer, primary_key=True)
    title = Column(String, nullable=False)
    url_segment = Column(String, nullable=False)
    can_view_type = Column(String, default=CanViewType.ANYONE.value, nullable=False)
    can_post_type = Column(String, default=CanPostType.LOGGED_IN_USERS.value, nullable=False)
    display_signatures = Column(Boolean, default=False, nullable=False)
    show_in_categories = Column(Boolean, default=False, nullable=False)
    allow_gravatars = Column(Boolean, default=False, nullable=False)
    gravatar_type = Column(String, nullable=True)
    forbidden_words = Column(Text, nullable=True)

    # Relationships
    forums = relationship("Forum", back_populates="holder")
    categories = relationship("ForumCategory", back_populates="holder", cascade="all, delete-orphan")
    poster_groups = relationship("Group", secondary=holder_poster_groups, lazy="selectin")
    viewer_groups = relationship("Group", secondary=holder_viewer_groups, lazy="selectin")

    def forbidden_word_list(self) -> list:
        if not self.forbidden_words:
            return []
        return [word.strip() for word in self.forbidden_words.split(",") if word.strip()]

    def __repr__(self):
        return f"<ForumHolder(id={self.id}, title={self.title})>"


class ForumCategory(Base):
    """Groups forums of a holder; higher ``stackable_order`` lists first."""
    __tablename__ = 'forum_categories'

    id = Column(Integer, primary_key=True)
    holder_id = Column(Integer, ForeignKey('forum_holders.id'), nullable=False)
    title = Column(String(100), nullable=False)
    stackable_order = Column(Integer, default=1, nullable=False)

    holder = relationship("ForumHolder", back_populates="categories")

    def __repr__(self):
        return f"<ForumCategory(id={self.id}, title={self.title})>"


class Forum(Base):
    """
    Represents a posting venue.

    A forum belongs to an optional holder, has a single designated
    moderator plus any number of co-moderators, and resolves its
    ``Inherit`` view and post policies through the holder.
    """
    __tablename__ = 'forums'

    id = Column(Integer, primary_key=True)
    holder_id = Column(Integer, ForeignKey('forum_holders.id'), nullable=True)
    category_id = Column(Integer, ForeignKey('forum_categories.id'), nullable=True)
    title = Column(String, nullable=False)
    url_segment = Column(String, nullable=False)
    abstract = Column(Text, nullable=True)
    can_view_type = Column(String, default=CanViewType.INHERIT.value, nullable=False)
    can_post_type = Column(String, default=CanPostType.INHERIT.value, nullable=False)
    can_attach_files = Column(Boolean, default=False, nullable=False)
    moderator_id = Column(Integer, ForeignKey('members.id', ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    holder = relationship("ForumHolder", back_populates="forums", lazy="joined")
    category = relationship("ForumCategory", lazy="joined")
    moderator = relationship("Member", foreign_keys=[moderator_id], lazy="joined")
    moderators = relationship("Member", secondary=forum_moderators, back_populates="moderated_forums", lazy="selectin")
    poster_groups = relationship("Group", secondary=forum_poster_groups, lazy="selectin")
    viewer_groups = relationship("Group", secondary=forum_viewer_groups, lazy="selectin")
    threads = relationship("ForumThread", back_populates="forum")

    def moderator_ids(self) -> set:
        ids = {member.id for member in self.moderators}
        if self.moderator_id is not None:
            ids.add(self.moderator_id)
        return ids

    def link(self) -> str:
        if self.holder is not None:
            return f"{self.holder.url_segment}/{self.url_segment}/"
        return f"{self.url_segment}/"

    def __repr__(self):
        return f"<Forum(id={self.id}, title={self.title})>"


class ForumThread(Base):
    """
    Represents a discussion thread within a forum.

    Posts are ordered by creation time, then ID. Deleting a thread deletes
    its posts, their attachments, and the thread's subscriptions.
    """
    __tablename__ = 'forum_threads'

    id = Column(Integer, primary_key=True)
    forum_id = Column(Integer, ForeignKey('forums.id'), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    num_views = Column(Integer, default=0, nullable=False)
    is_sticky = Column(Boolean, default=False, nullable=False, index=True)
    is_global_sticky = Column(Boolean, default=False, nullable=False, index=True)
    is_read_only = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    forum = relationship("Forum", back_populates="threads", lazy="joined")
    posts = relationship(
        "Post",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="[Post.created_at, Post.id]",
    )
    subscriptions = relationship("ThreadSubscription", back_populates="thread", cascade="all, delete-orphan")

    def link(self, action: Optional[str] = "show", show_id: bool = True) -> str:
        base = self.forum.link()
        if not action:
            return base
        return f"{base}{action}/{self.id}" if show_id else f"{base}{action}"

    def __repr__(self):
        return f"<ForumThread(id={self.id}, title={self.title})>"


class Post(Base):
    """
    Represents a single post within a thread.

    ``forum_id`` mirrors ``thread.forum_id`` and ``is_first_post`` marks the
    lowest-ID post of the thread; both are kept in step by the database
    manager.
    """
    __tablename__ = 'posts'

    id = Column(Integer, primary_key=True)
    thread_id = Column(Integer, ForeignKey('forum_threads.id'), nullable=False, index=True)
    forum_id = Column(Integer, ForeignKey('forums.id'), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey('members.id', ondelete="SET NULL"), nullable=True, index=True)
    content = Column(Text, nullable=False)
    status = Column(String, default=PostStatus.MODERATED.value, nullable=False)
    is_first_post = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_edited = Column(DateTime, nullable=True)

    # Relationships
    thread = relationship("ForumThread", back_populates="posts", lazy="joined")
    author = relationship("Member", lazy="joined")
    attachments = relationship("PostAttachment", back_populates="post", cascade="all, delete-orphan")

    @property
    def title(self) -> str:
        if self.is_first_post:
            return self.thread.title
        return f"Re: {self.thread.title}"

    def __repr__(self):
        return f"<Post(id={self.id}, author={self.author_id})>"


class PostAttachment(Base):
    """
    Represents a stored file attached to a post.

    ``file_path`` is relative to the configured attachments folder and the
    stored file is released when the post is deleted.
    """
    __tablename__ = 'post_attachments'

    id = Column(Integer, primary_key=True)
    post_id = Column(Integer, ForeignKey('posts.id'), nullable=False, index=True)
    filename = Column(String, nullable=False)
    file_path = Column(String, nullable=False)
    file_hash = Column(String, nullable=False)  # SHA-256
    file_size = Column(Integer, nullable=False)
    mime_type = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    post = relationship("Post", back_populates="attachments", lazy="joined")

    def __repr__(self):
        return f"<PostAttachment(id={self.id}, filename={self.filename})>"


class ThreadSubscription(Base):
    """A member's interest in new replies to a thread."""
    __tablename__ = 'thread_subscriptions'
    __table_args__ = (
        UniqueConstraint('thread_id', 'member_id', name='uq_thread_subscription'),
    )

    id = Column(Integer, primary_key=True)
    thread_id = Column(Integer, ForeignKey('forum_threads.id'), nullable=False, index=True)
    member_id = Column(Integer, ForeignKey('members.id'), nullable=False, index=True)
    last_sent = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    thread = relationship("ForumThread", back_populates="subscriptions")
    member = relationship("Member", back_populates="subscriptions", lazy="joined")

    def __repr__(self):
        return f"<ThreadSubscription(thread={self.thread_id}, member={self.member_id})>"
