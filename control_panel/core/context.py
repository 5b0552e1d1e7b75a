from __future__ import annotations

import datetime
from dataclasses import dataclass

from control_panel.models.user import User


UNKNOWN_PROVENANCE = "unknown"


@dataclass(frozen=True)
class RequestContext:
    """Caller identity and request provenance, resolved once per request by the session guard."""

    actor: User
    ip_address: str = UNKNOWN_PROVENANCE
    user_agent: str = UNKNOWN_PROVENANCE


def now_utc() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def as_utc(value: datetime.datetime) -> datetime.datetime:
    # SQLite hands timestamps back without tzinfo; every stored timestamp is UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=datetime.UTC)
