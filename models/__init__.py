"""
Data models module for the forum core.

This module contains SQLAlchemy ORM models for:
- Forum holders, categories and forums
- Threads, posts and post attachments
- Members and groups
- Thread subscriptions
"""
