"""
Tests for opaque pagination cursors.
"""

import base64

from foryou.cursors import FeedCursor, ReelCursor, decode_page_depth


class TestFeedCursor:

    def test_round_trip(self):
        cursor = FeedCursor(handle_index=3, page=2, by_handle={"men": "men:40", "all": None}, exhausted=["women"])
        decoded = FeedCursor.decode(cursor.encode())
        assert decoded == cursor
        assert decode_page_depth(cursor.encode()) == 2

    def test_new_handles_seeded(self):
        cursor = FeedCursor(by_handle={"men": "men:40"}).encode()
        decoded = FeedCursor.decode(cursor, handles=["men", "sale"])
        assert decoded.by_handle == {"men": "men:40", "sale": None}

    def test_garbage_means_page_zero(self):
        for raw in (None, "", "%%%", base64.urlsafe_b64encode(b"[1,2]").decode()):
            assert FeedCursor.decode(raw, handles=["men"]) == FeedCursor.start(["men"])
            assert decode_page_depth(raw) == 0

    def test_invalid_fields_sanitized(self):
        raw = base64.urlsafe_b64encode(b'{"page": -4, "handle_index": "x", "exhausted": [1, "a"]}').decode()
        decoded = FeedCursor.decode(raw)
        assert decoded.page == 0
        assert decoded.handle_index == 0
        assert decoded.exhausted == ["a"]


class TestReelCursor:

    def test_round_trip(self):
        cursor = ReelCursor(page=1, search_after="search:12", served_handles=["a", "b"])
        assert ReelCursor.decode(cursor.encode()) == cursor

    def test_served_handles_normalized(self):
        raw = base64.urlsafe_b64encode(b'{"page": 2, "served_handles": [" A ", "", 3]}').decode()
        decoded = ReelCursor.decode(raw)
        assert decoded.page == 2
        assert decoded.served_handles == ["a"]

    def test_garbage(self):
        assert ReelCursor.decode("not-a-cursor") == ReelCursor()
