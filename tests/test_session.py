"""
Tests for ViewerSession
"""

import threading

from core.session import ViewerSession
from models.database import Member


class TestViewerSession:
    """Test identity and seen-thread tracking."""

    def test_anonymous_by_default(self):
        assert ViewerSession("abc").current_member() is None

    def test_log_in_and_out(self):
        session = ViewerSession("abc")
        member = Member(id=1, email="m@example.com", nickname="m")

        session.log_in(member)
        assert session.current_member() is member

        session.log_out()
        assert session.current_member() is None

    def test_mark_seen_once(self):
        session = ViewerSession("abc")

        assert session.has_seen(5) is False
        assert session.mark_seen(5) is True
        assert session.mark_seen(5) is False
        assert session.has_seen(5) is True

    def test_forget_seen(self):
        session = ViewerSession("abc")
        session.mark_seen(5)

        session.forget_seen(5)
        session.forget_seen(6)

        assert session.has_seen(5) is False
        assert session.mark_seen(5) is True

    def test_concurrent_marks_count_once(self):
        session = ViewerSession("abc")
        results = []

        def mark():
            results.append(session.mark_seen(9))

        workers = [threading.Thread(target=mark) for _ in range(8)]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        assert results.count(True) == 1
