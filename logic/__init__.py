"""
Application Logic Layer for the forum core

This module provides the forum's business logic: access control, thread and
post lifecycle, subscriptions, moderation, forum listings, members and
reports. It coordinates the core infrastructure (database, attachment store,
renderers, mail transports) for any outer surface.
"""

from logic.forum_manager import ForumManager, NewPostsStatus
from logic.thread_manager import ThreadManager, ThreadManagerError, page_offset
from logic.subscription_manager import SubscriptionManager, DeliveryReport
from logic.moderation_manager import ModerationManager
from logic.member_manager import MemberManager
from logic.report_manager import ReportManager

__all__ = [
    'ForumManager',
    'NewPostsStatus',
    'ThreadManager',
    'ThreadManagerError',
    'page_offset',
    'SubscriptionManager',
    'DeliveryReport',
    'ModerationManager',
    'MemberManager',
    'ReportManager',
]
