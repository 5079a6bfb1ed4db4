from __future__ import annotations

import secrets
import time
from typing import Dict, Iterable, Optional

# Fixed avatar palette, assigned in join order and wrapping around.
DINER_COLORS = (
    "#f97316",  # orange
    "#3b82f6",  # blue
    "#10b981",  # emerald
    "#a855f7",  # purple
    "#ef4444",  # red
    "#eab308",  # yellow
    "#ec4899",  # pink
    "#14b8a6",  # teal
)

FALLBACK_COLOR = "#6b7280"


def generate_id(prefix: str = "") -> str:
    """Return a sortable, collision-resistant id.

    A millisecond timestamp in base 36 followed by 64 random bits, so ids
    created on the same device stay unique even within one millisecond.
    """
    stamp = _base36(int(time.time() * 1000))
    token = secrets.token_hex(8)
    return f"{prefix}{stamp}-{token}" if prefix else f"{stamp}-{token}"


def _base36(value: int) -> str:
    digits = "0123456789abcdefghijklmnopqrstuvwxyz"
    if value == 0:
        return "0"
    out = []
    while value:
        value, rem = divmod(value, 36)
        out.append(digits[rem])
    return "".join(reversed(out))


def color_for_index(index: int) -> str:
    return DINER_COLORS[index % len(DINER_COLORS)]


class DinerColorRegistry:
    """
    Memoised diner id -> colour mapping.

    Colours are keyed by join order: the first diner registered gets the first
    palette entry and so on. Once assigned a colour never changes, even if the
    diner list is later rebuilt.
    """

    def __init__(self) -> None:
        self._colors: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._colors)

    def __contains__(self, diner_id: str) -> bool:
        return diner_id in self._colors

    def add(self, diner_id: str) -> str:
        color = self._colors.get(diner_id)
        if color is None:
            color = color_for_index(len(self._colors))
            self._colors[diner_id] = color
        return color

    def get(self, diner_id: str) -> Optional[str]:
        return self._colors.get(diner_id)

    def sync(self, diner_ids: Iterable[str]) -> None:
        """Register every id in join order; already known ids keep their colour."""
        for diner_id in diner_ids:
            self.add(diner_id)

    def reset(self) -> None:
        self._colors.clear()
