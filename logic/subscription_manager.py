"""
Subscription Manager for the forum core

Manages thread subscriptions and notifies subscribers about new posts.
Each recipient is delivered to independently: one failed delivery is
logged and recorded but never stops the rest of the batch.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from core.crypto_manager import TokenSigner
from core.db_manager import DBManager
from core.error_handler import (
    DeliveryError,
    ErrorHandler,
    NotFoundError,
    PermissionDeniedError,
    get_error_handler,
)
from core.mail_transport import MailTransport
from models.database import ANONYMOUS_NAME, ForumThread, Member, Post, ThreadSubscription


logger = logging.getLogger(__name__)


NOTIFICATION_SUBJECT = "New reply for {post_title}"
NOTIFICATION_BODY = (
    "Hi {member_name},\n"
    "\n"
    "{author_name} has replied to \"{thread_title}\".\n"
    "Read the reply: {post_link}\n"
    "\n"
    "To stop receiving these e-mails, unsubscribe here: {unsubscribe_link}\n"
)
MODERATOR_SUBJECT = "New post in {forum_title}: {post_title}"
MODERATOR_BODY = (
    "Hi {member_name},\n"
    "\n"
    "{author_name} posted \"{post_title}\" in {forum_title}.\n"
    "Review it here: {post_link}\n"
)


@dataclass
class DeliveryReport:
    """Outcome of one notification fan-out."""
    post_id: int
    delivered: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    suppressed: List[int] = field(default_factory=list)

    @property
    def attempted(self) -> List[int]:
        return self.delivered + self.failed

    @property
    def ok(self) -> bool:
        return not self.failed


class SubscriptionManager:
    """
    Manages thread subscriptions and new-post notifications.

    Responsibilities:
    - Subscribe and unsubscribe members, idempotently
    - Sign and verify unsubscribe links
    - Deliver one notification per subscriber other than the author
    - Optionally notify forum moderators about new posts
    """

    def __init__(
        self,
        db_manager: DBManager,
        transport: MailTransport,
        signer: TokenSigner,
        base_url: str = "",
        delivery_workers: int = 1,
        notify_moderators: bool = False,
        post_link: Optional[Callable[[Post], str]] = None,
        error_handler: Optional[ErrorHandler] = None
    ):
        """
        Initialize SubscriptionManager.

        Args:
            db_manager: DBManager instance for database operations
            transport: Mail transport used for every delivery
            signer: TokenSigner for unsubscribe links
            base_url: Absolute site URL prefixed to links in e-mails
            delivery_workers: Concurrent deliveries per fan-out
            notify_moderators: Whether moderators get mail about new posts
            post_link: Builds the relative link of a post (thread link when omitted)
            error_handler: Handler for delivery failures (global handler when omitted)
        """
        if delivery_workers < 1:
            raise ValueError("delivery_workers must be at least 1")
        self.db = db_manager
        self.transport = transport
        self.signer = signer
        self.base_url = base_url.rstrip("/")
        self.delivery_workers = delivery_workers
        self.notify_moderators_enabled = notify_moderators
        self._post_link = post_link or (lambda post: post.thread.link())
        self._error_handler = error_handler

    @property
    def error_handler(self) -> ErrorHandler:
        return self._error_handler or get_error_handler()

    # ------------------------------------------------------------------
    # Subscription state
    # ------------------------------------------------------------------

    def subscribe(self, thread_id: int, member_id: int) -> ThreadSubscription:
        """
        Subscribe a member to a thread. Subscribing twice is a no-op.

        Raises:
            NotFoundError: If the thread or member does not exist
        """
        if self.db.get_thread(thread_id) is None:
            raise NotFoundError(f"Thread {thread_id} not found")
        if self.db.get_member(member_id) is None:
            raise NotFoundError(f"Member {member_id} not found")

        subscription = self.db.add_subscription(thread_id, member_id)
        logger.info(f"Member {member_id} subscribed to thread {thread_id}")
        return subscription

    def unsubscribe(self, thread_id: int, member_id: int) -> bool:
        """
        Remove a subscription.

        Returns:
            bool: True if the member was subscribed
        """
        removed = self.db.remove_subscription(thread_id, member_id)
        if removed:
            logger.info(f"Member {member_id} unsubscribed from thread {thread_id}")
        return removed

    def is_subscribed(self, thread_id: int, member_id: int) -> bool:
        return self.db.get_subscription(thread_id, member_id) is not None

    def get_subscribers(self, thread_id: int) -> List[Member]:
        return [subscription.member for subscription in self.db.get_subscriptions_for_thread(thread_id)]

    def unsubscribe_token(self, thread_id: int, member_id: int) -> str:
        return self.signer.sign("unsubscribe", thread_id, member_id)

    def unsubscribe_link(self, thread: ForumThread, member_id: int) -> str:
        """Absolute, signed link that unsubscribes ``member_id`` from ``thread``."""
        token = self.unsubscribe_token(thread.id, member_id)
        return self._absolute(f"{thread.link('unsubscribe')}/{member_id}/{token}")

    def unsubscribe_with_token(self, thread_id: int, member_id: int, token: str) -> bool:
        """
        Unsubscribe through a signed e-mail link.

        Raises:
            PermissionDeniedError: If the token does not match
        """
        if not self.signer.verify(token, "unsubscribe", thread_id, member_id):
            raise PermissionDeniedError("Invalid unsubscribe token")
        return self.unsubscribe(thread_id, member_id)

    # ------------------------------------------------------------------
    # Notification
    # ------------------------------------------------------------------

    def attach(self, thread_manager) -> None:
        """Register this manager's notifications as post observers."""
        thread_manager.add_observer(self.notify_new_post)
        if self.notify_moderators_enabled:
            thread_manager.add_observer(self.notify_moderators)

    def notify_new_post(self, post: Post) -> DeliveryReport:
        """
        Notify every subscriber of the post's thread except its author.

        Banned subscribers are skipped. Failures are logged and recorded in
        the report; they are not retried.

        Args:
            post: The new post

        Returns:
            DeliveryReport for this fan-out
        """
        report = DeliveryReport(post_id=post.id)
        recipients = []
        for subscription in self.db.get_subscriptions_for_thread(post.thread_id):
            if post.author_id is not None and subscription.member_id == post.author_id:
                continue
            if subscription.member.is_banned():
                report.suppressed.append(subscription.member_id)
                continue
            recipients.append(subscription)

        if not recipients:
            logger.debug(f"No subscribers to notify for post {post.id}")
            return report

        base_context = self._post_context(post)
        results = self._run(
            lambda subscription: self._deliver_to_subscriber(subscription, post, base_context),
            recipients
        )
        for subscription, delivered in zip(recipients, results):
            (report.delivered if delivered else report.failed).append(subscription.member_id)

        logger.info(
            f"Post {post.id}: notified {len(report.delivered)} subscribers, "
            f"{len(report.failed)} failed, {len(report.suppressed)} suppressed"
        )
        return report

    def notify_moderators(self, post: Post) -> DeliveryReport:
        """
        E-mail the forum's moderators about a new post.

        Does nothing unless moderator notification is enabled. The author
        is never notified about their own post.
        """
        report = DeliveryReport(post_id=post.id)
        if not self.notify_moderators_enabled:
            return report

        forum = post.thread.forum
        moderators: Dict[int, Member] = {member.id: member for member in forum.moderators}
        if forum.moderator is not None:
            moderators[forum.moderator.id] = forum.moderator
        moderators.pop(post.author_id, None)

        recipients = list(moderators.values())
        if not recipients:
            return report

        context = self._post_context(post)
        context["forum_title"] = forum.title
        results = self._run(
            lambda member: self._send(
                member,
                MODERATOR_SUBJECT.format(**context),
                MODERATOR_BODY.format(member_name=member.display_name, **context),
                dict(context, member_name=member.display_name),
                post,
            ),
            recipients
        )
        for member, delivered in zip(recipients, results):
            (report.delivered if delivered else report.failed).append(member.id)
        return report

    def _run(self, deliver: Callable, recipients: list) -> List[bool]:
        if self.delivery_workers == 1 or len(recipients) == 1:
            return [deliver(recipient) for recipient in recipients]
        with ThreadPoolExecutor(max_workers=self.delivery_workers) as executor:
            return list(executor.map(deliver, recipients))

    def _deliver_to_subscriber(self, subscription: ThreadSubscription, post: Post, base_context: dict) -> bool:
        member = subscription.member
        context = dict(
            base_context,
            member_name=member.display_name,
            unsubscribe_link=self.unsubscribe_link(post.thread, member.id),
        )
        delivered = self._send(
            member,
            NOTIFICATION_SUBJECT.format(**context),
            NOTIFICATION_BODY.format(**context),
            context,
            post,
        )
        if delivered:
            try:
                self.db.mark_subscription_sent(subscription.id, datetime.utcnow())
            except Exception as e:
                self.error_handler.handle_error(
                    e,
                    f"record notification for subscription {subscription.id}",
                    member_id=member.id,
                    thread_id=post.thread_id,
                    show_notification=False
                )
        return delivered

    def _send(self, member: Member, subject: str, body: str, context: dict, post: Post) -> bool:
        """Deliver one message; any failure is handled here and reported as False."""
        try:
            if not self.transport.send(member.email, subject, body, context):
                raise DeliveryError(f"Transport refused mail to member {member.id}")
            return True
        except Exception as e:
            self.error_handler.handle_error(
                e,
                f"notify member {member.id} about post {post.id}",
                member_id=member.id,
                thread_id=post.thread_id,
                show_notification=False
            )
            return False

    def _post_context(self, post: Post) -> dict:
        author = post.author
        return {
            "post_id": post.id,
            "post_title": post.title,
            "thread_title": post.thread.title,
            "author_name": author.display_name if author is not None else ANONYMOUS_NAME,
            "post_link": self._absolute(self._post_link(post)),
        }

    def _absolute(self, link: str) -> str:
        if not self.base_url:
            return link
        return f"{self.base_url}/{link.lstrip('/')}"
