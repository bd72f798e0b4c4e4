"""
Connection capacity checks for a provider snapshot.

These functions only ever see a snapshot that was actually fetched. A failed
or timed out fetch is handled by the caller, which treats it as no headroom.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from models import CapacitySnapshot
from formatting import format_timestamp, humanize_relative


def has_headroom(snapshot: CapacitySnapshot) -> bool:
    """True if the provider can take another connection (max 0 means unlimited)"""
    if snapshot.max_connections == 0:
        return True
    return snapshot.active_connections < snapshot.max_connections


def is_over_limit(snapshot: CapacitySnapshot) -> bool:
    """True if a finite limit is reached or exceeded; never true for unlimited providers"""
    if snapshot.max_connections == 0:
        return False
    return snapshot.active_connections >= snapshot.max_connections


def summarize_capacity(snapshot: CapacitySnapshot, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Build the provider info panel: connection usage and account expiry"""
    now = now or datetime.now(timezone.utc)
    max_label = "∞" if snapshot.max_connections == 0 else str(snapshot.max_connections)

    expires = snapshot.expires_at
    expires_soon = False
    if expires:
        tomorrow = (now + timedelta(days=1)).date()
        expires_soon = expires.date() in (now.date(), tomorrow)

    return {
        "active_connections": f"{snapshot.active_connections}/{max_label}",
        "max_streams_reached": is_over_limit(snapshot),
        "expires": humanize_relative(expires, now) if expires else "N/A",
        "expires_description": format_timestamp(expires) if expires else "N/A",
        "expires_in_24_hours_or_less": expires_soon,
    }
