"""
Report Manager for the forum core

Monthly activity reports for administrators.
"""

import logging
from datetime import datetime
from typing import List, Tuple

from core.db_manager import DBManager


logger = logging.getLogger(__name__)


class ReportManager:
    """Builds the monthly post and sign-up reports."""

    def __init__(self, db_manager: DBManager):
        self.db = db_manager

    def monthly_posts(self) -> List[Tuple[str, int]]:
        """
        Number of posts per month.

        Returns:
            (YYYY-MM, count) pairs, newest month first
        """
        return self.db.monthly_post_counts()

    def member_signups(self) -> List[Tuple[str, int]]:
        """
        Number of new members per month.

        Returns:
            ("YYYY Month", count) pairs such as ("2015 April", 3), newest first
        """
        return [(self._month_label(month), count) for month, count in self.db.monthly_signup_counts()]

    @staticmethod
    def _month_label(month: str) -> str:
        return datetime.strptime(month, "%Y-%m").strftime("%Y %B")
