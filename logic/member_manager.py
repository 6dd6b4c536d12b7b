"""
Member Manager for the forum core

Manages member registration, profiles, group membership and the
member-facing presentation helpers (rank, public profile, avatar and
suspension notice).
"""

import hashlib
import logging
from typing import List, Optional
from urllib.parse import urlencode

from sqlalchemy.exc import IntegrityError

from core.db_manager import DBManager
from core.error_handler import NotFoundError, PermissionDeniedError, ValidationError
from logic import access_control
from models.database import ForumHolder, Member, Post


logger = logging.getLogger(__name__)


MODERATOR_RANK = "Forum Moderator"
DEFAULT_AVATAR_URL = "forum/images/forummember_holder.gif"
GRAVATAR_URL = "https://www.gravatar.com/avatar/"
SUSPENSION_MESSAGE = "This forum account has been suspended."
SUSPENSION_CONTACT = "Please contact {admin_email} to resolve this issue."

PROFILE_FIELDS = (
    "first_name", "surname", "nickname", "occupation", "company",
    "city", "country", "signature", "avatar_url",
    "first_name_public", "surname_public", "occupation_public",
    "company_public", "city_public", "country_public", "email_public",
)
ADMIN_FIELDS = ("forum_rank", "is_admin")

# Profile field -> flag that makes it visible to other members
PUBLIC_FLAGS = {
    "first_name": "first_name_public",
    "surname": "surname_public",
    "occupation": "occupation_public",
    "company": "company_public",
    "city": "city_public",
    "country": "country_public",
    "email": "email_public",
}


class MemberManager:
    """
    Manages forum members.

    Responsibilities:
    - Register members and update their profiles
    - Manage group membership
    - Present rank, public profile, avatar and post history
    """

    def __init__(self, db_manager: DBManager, admin_email: str = "", default_avatar_url: str = DEFAULT_AVATAR_URL):
        """
        Initialize MemberManager.

        Args:
            db_manager: DBManager instance for database operations
            admin_email: Contact address shown to suspended members
            default_avatar_url: Avatar shown when no other avatar applies
        """
        self.db = db_manager
        self.admin_email = admin_email
        self.default_avatar_url = default_avatar_url

    def register_member(self, email: str, nickname: str, **fields) -> Member:
        """
        Register a new member.

        Args:
            email: Unique e-mail address
            nickname: Display nickname
            **fields: Other profile fields

        Returns:
            Member: Created member

        Raises:
            ValidationError: If a required field is missing, a field is
                unknown or the e-mail is already registered
        """
        email = (email or "").strip()
        nickname = (nickname or "").strip()
        if not email or "@" not in email:
            raise ValidationError("A valid e-mail address is required")
        if not nickname:
            raise ValidationError("A nickname is required")
        unknown = set(fields) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

        try:
            member = self.db.create_member(email, nickname=nickname, **fields)
        except IntegrityError:
            raise ValidationError(f"E-mail {email} is already registered")

        logger.info(f"Registered member {member.id}")
        return member

    def get_member(self, member_id: int) -> Optional[Member]:
        return self.db.get_member(member_id)

    def update_profile(self, member_id: int, editor: Optional[Member], **fields) -> Member:
        """
        Update a member's profile.

        Members edit themselves; admins edit anyone and may also change
        ``forum_rank`` and ``is_admin``.

        Raises:
            NotFoundError: If the member does not exist
            PermissionDeniedError: If ``editor`` may not edit the member
            ValidationError: If a field may not be changed
        """
        target = self.db.get_member(member_id)
        if target is None:
            raise NotFoundError(f"Member {member_id} not found")
        if not access_control.can_edit_member(target, editor):
            raise PermissionDeniedError(f"Editing member {member_id} is not allowed")

        allowed = set(PROFILE_FIELDS)
        if editor.is_admin:
            allowed.update(ADMIN_FIELDS)
        refused = set(fields) - allowed
        if refused:
            raise ValidationError(f"Fields cannot be changed: {', '.join(sorted(refused))}")
        if "nickname" in fields and not (fields["nickname"] or "").strip():
            raise ValidationError("A nickname is required")

        member = self.db.update_member(member_id, **fields)
        logger.info(f"Member {member_id} profile updated by {editor.id}")
        return member

    def add_to_group(self, group_id: int, member_id: int, admin: Optional[Member]) -> None:
        """
        Add a member to a group. Admins only.

        Raises:
            PermissionDeniedError: If ``admin`` is not an administrator
            NotFoundError: If the group or member does not exist
        """
        if admin is None or not admin.is_admin:
            raise PermissionDeniedError("Only administrators may manage groups")
        self.db.add_member_to_group(group_id, member_id)
        logger.info(f"Member {member_id} added to group {group_id}")

    def forum_rank(self, member: Member) -> str:
        if self.db.count_moderated_forums(member.id) > 0:
            return MODERATOR_RANK
        return member.forum_rank

    def public_profile(self, member: Member, viewer: Optional[Member] = None) -> dict:
        """
        Profile fields ``viewer`` may see.

        Flagged fields are shown only when public, to the member themselves
        or to an admin.
        """
        sees_all = viewer is not None and (viewer.is_admin or viewer.id == member.id)
        profile = {
            "id": member.id,
            "nickname": member.display_name,
            "forum_rank": self.forum_rank(member),
            "signature": member.signature,
            "created_at": member.created_at,
        }
        for field_name, flag in PUBLIC_FLAGS.items():
            if sees_all or getattr(member, flag):
                profile[field_name] = getattr(member, field_name)
        return profile

    def num_posts(self, member: Member) -> int:
        return self.db.count_posts_by_author(member.id)

    def latest_posts(self, member: Member, viewer: Optional[Member] = None, limit: int = 10) -> List[Post]:
        """A member's newest posts that ``viewer`` may see."""
        posts = self.db.get_posts_by_author(member.id)
        visible = [post for post in posts if access_control.can_view_post(post, viewer)]
        return visible[:limit]

    def suspension_message(self) -> str:
        if not self.admin_email:
            return SUSPENSION_MESSAGE
        return f"{SUSPENSION_MESSAGE} {SUSPENSION_CONTACT.format(admin_email=self.admin_email)}"

    def avatar_url(self, member: Member, holder: Optional[ForumHolder] = None) -> str:
        """
        URL of the member's avatar.

        An uploaded avatar wins. Otherwise, when the holder allows
        gravatars, the Gravatar for the member's e-mail is used with the
        holder's gravatar type as fallback image.
        """
        if member.avatar_url:
            return member.avatar_url
        if holder is None or not holder.allow_gravatars:
            return self.default_avatar_url

        digest = hashlib.md5(member.email.strip().lower().encode("utf-8")).hexdigest()
        params = {"size": 80, "default": holder.gravatar_type or self.default_avatar_url}
        return f"{GRAVATAR_URL}{digest}?{urlencode(params)}"
