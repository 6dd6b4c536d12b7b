"""
Viewer session state

Holds the identity of the current viewer and the set of threads whose
view has already been counted in this session.
"""

import threading
from typing import Optional, Set

from models.database import Member


class ViewerSession:
    """
    Per-viewer session used for identity lookup and view counting.

    Safe to share between threads serving the same viewer.
    """

    def __init__(self, session_key: str, member: Optional[Member] = None):
        """
        Initialize ViewerSession.

        Args:
            session_key: Opaque key identifying the viewer's session
            member: Logged-in member, or None for an anonymous viewer
        """
        self.session_key = session_key
        self._member = member
        self._seen: Set[int] = set()
        self._lock = threading.Lock()

    def current_member(self) -> Optional[Member]:
        return self._member

    def log_in(self, member: Member) -> None:
        self._member = member

    def log_out(self) -> None:
        self._member = None

    def has_seen(self, thread_id: int) -> bool:
        with self._lock:
            return thread_id in self._seen

    def mark_seen(self, thread_id: int) -> bool:
        """
        Record that the viewer has seen a thread.

        Returns:
            True if this is the first time the thread is marked
        """
        with self._lock:
            if thread_id in self._seen:
                return False
            self._seen.add(thread_id)
            return True

    def forget_seen(self, thread_id: int) -> None:
        with self._lock:
            self._seen.discard(thread_id)
