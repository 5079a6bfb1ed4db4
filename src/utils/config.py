"""Runtime settings for the table session core.

Defaults match a regular restaurant shift. Every value can be overridden by a
``TABLE_*`` environment variable or by constructing ``Settings`` directly,
which is what the tests do to run the close-table flow without real delays.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Tuple

SESSION_TTL_HOURS = 8.0

REQUESTING_DELAY = 1.5
WAITER_RESPONSE_MIN = 2.0
WAITER_RESPONSE_MAX = 4.0
BILL_DELIVERY_DELAY = 3.0
CALL_WAITER_DELAY = 1.0

WAITER_NAMES = ("Carlos", "María", "Juan", "Ana", "Lucía")
ESTIMATED_MINUTES = (2, 5)

DB_PATH = "data/table.sqlite"


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    session_ttl_hours: float = SESSION_TTL_HOURS
    requesting_delay: float = REQUESTING_DELAY
    waiter_response_min: float = WAITER_RESPONSE_MIN
    waiter_response_max: float = WAITER_RESPONSE_MAX
    bill_delivery_delay: float = BILL_DELIVERY_DELAY
    call_waiter_delay: float = CALL_WAITER_DELAY
    waiter_names: Tuple[str, ...] = field(default=WAITER_NAMES)
    estimated_minutes: Tuple[int, int] = field(default=ESTIMATED_MINUTES)
    db_path: str = DB_PATH

    def __post_init__(self):
        if self.session_ttl_hours <= 0:
            raise ValueError("session_ttl_hours must be positive.")
        if self.waiter_response_min > self.waiter_response_max:
            raise ValueError("waiter_response_min must not exceed waiter_response_max.")
        if not self.waiter_names:
            raise ValueError("waiter_names must not be empty.")

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            session_ttl_hours=_env_float("TABLE_SESSION_TTL_HOURS", SESSION_TTL_HOURS),
            requesting_delay=_env_float("TABLE_REQUESTING_DELAY", REQUESTING_DELAY),
            waiter_response_min=_env_float("TABLE_WAITER_MIN", WAITER_RESPONSE_MIN),
            waiter_response_max=_env_float("TABLE_WAITER_MAX", WAITER_RESPONSE_MAX),
            bill_delivery_delay=_env_float("TABLE_BILL_DELAY", BILL_DELIVERY_DELAY),
            call_waiter_delay=_env_float("TABLE_CALL_WAITER_DELAY", CALL_WAITER_DELAY),
            db_path=os.getenv("TABLE_DB_PATH") or DB_PATH,
        )

    @classmethod
    def instant(cls) -> "Settings":
        """Settings with every simulated delay set to zero."""
        return cls(
            requesting_delay=0.0,
            waiter_response_min=0.0,
            waiter_response_max=0.0,
            bill_delivery_delay=0.0,
            call_waiter_delay=0.0,
        )
