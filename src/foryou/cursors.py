"""
Opaque pagination cursors.

Cursors are dataclasses internally and opaque base64-JSON strings to
callers. Decoding never fails: a missing, corrupt or foreign cursor means
"start from page 0".
"""

import base64
import binascii
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from core.utils import normalize_key


def _encode(payload: Dict[str, Any]) -> str:
    json_str = json.dumps(payload, separators=(",", ":"), sort_keys=True)
    return base64.urlsafe_b64encode(json_str.encode("utf-8")).decode("ascii")


def _decode(encoded: Optional[str]) -> Optional[Mapping[str, Any]]:
    if not encoded or not isinstance(encoded, str):
        return None
    try:
        json_str = base64.urlsafe_b64decode(encoded.encode("ascii")).decode("utf-8")
        data = json.loads(json_str)
    except (binascii.Error, UnicodeError, ValueError):
        return None
    return data if isinstance(data, Mapping) else None


def _non_negative_int(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, int(value))


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


# =============================================================================
# Feed (collection walk) cursor
# =============================================================================

@dataclass
class FeedCursor:
    """
    Round-robin state over collection handles.

    handle_index: next handle to visit
    page: how many feed pages were served (drives exploration depth)
    by_handle: per-handle continuation token (None = from the start)
    exhausted: handles with no further pages
    """
    handle_index: int = 0
    page: int = 0
    by_handle: Dict[str, Optional[str]] = field(default_factory=dict)
    exhausted: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handle_index": self.handle_index,
            "page": self.page,
            "by_handle": dict(self.by_handle),
            "exhausted": list(self.exhausted),
        }

    def encode(self) -> str:
        return _encode(self.to_dict())

    @classmethod
    def start(cls, handles: Iterable[str] = ()) -> "FeedCursor":
        return cls(by_handle={handle: None for handle in dict.fromkeys(handles) if handle})

    @classmethod
    def decode(cls, encoded: Optional[str], handles: Iterable[str] = ()) -> "FeedCursor":
        """Decode a cursor, seeding unknown handles with no continuation."""
        handles = [handle for handle in dict.fromkeys(handles) if handle]
        state = cls.start(handles)
        data = _decode(encoded)
        if data is None:
            return state

        by_handle = data.get("by_handle")
        if isinstance(by_handle, Mapping):
            for handle, token in by_handle.items():
                if isinstance(handle, str):
                    state.by_handle[handle] = _optional_str(token)

        exhausted = data.get("exhausted")
        state.handle_index = _non_negative_int(data.get("handle_index"))
        state.page = _non_negative_int(data.get("page"))
        state.exhausted = (
            [entry for entry in exhausted if isinstance(entry, str) and entry]
            if isinstance(exhausted, list) else []
        )
        return state


def decode_page_depth(encoded: Optional[str]) -> int:
    """Page depth of a feed cursor; 0 when absent or unreadable."""
    data = _decode(encoded)
    return _non_negative_int(data.get("page")) if data else 0


# =============================================================================
# Reel cursor
# =============================================================================

@dataclass
class ReelCursor:
    page: int = 0
    search_after: Optional[str] = None
    collection_cursor: Optional[str] = None
    served_handles: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.page,
            "search_after": self.search_after,
            "collection_cursor": self.collection_cursor,
            "served_handles": list(self.served_handles),
        }

    def encode(self) -> str:
        return _encode(self.to_dict())

    @classmethod
    def decode(cls, encoded: Optional[str]) -> "ReelCursor":
        data = _decode(encoded)
        if data is None:
            return cls()
        served = data.get("served_handles")
        return cls(
            page=_non_negative_int(data.get("page")),
            search_after=_optional_str(data.get("search_after")),
            collection_cursor=_optional_str(data.get("collection_cursor")),
            served_handles=(
                [key for key in (normalize_key(entry) for entry in served) if key]
                if isinstance(served, list) else []
            ),
        )
