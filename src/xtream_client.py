"""
Live capacity status for Xtream Codes accounts.

Queries player_api.php for the account's user_info block, which reports the
number of open connections and the connection limit.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

from config import settings
from errors import UpstreamUnreachable
from models import CapacitySnapshot, ProviderContext, XtreamCredentials

logger = logging.getLogger(__name__)


def _to_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _require_count(user_info: Dict[str, Any], key: str) -> int:
    """Connection counts must be present and numeric; only an explicit 0 max means unlimited"""
    value = user_info.get(key)
    if value is None or value == "":
        raise UpstreamUnreachable(f"Status payload is missing {key}")
    try:
        return max(int(value), 0)
    except (TypeError, ValueError, OverflowError) as e:
        raise UpstreamUnreachable(f"Status payload has a non-numeric {key}: {value!r}") from e


def _parse_expiry(value: Any) -> Optional[datetime]:
    exp_date = _to_int(value, default=0)
    if not exp_date:
        return None
    try:
        return datetime.fromtimestamp(exp_date, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        logger.warning(f"Ignoring out-of-range exp_date in status payload: {value!r}")
        return None


def parse_user_info(user_info: Dict[str, Any], fetched_at: float) -> CapacitySnapshot:
    """
    Convert a user_info payload into a capacity snapshot.

    Raises UpstreamUnreachable when the connection counts are missing or not
    numbers. An unreadable expiry date is dropped rather than failing the fetch.
    """
    return CapacitySnapshot(
        active_connections=_require_count(user_info, "active_cons"),
        max_connections=_require_count(user_info, "max_connections"),
        fetched_at=fetched_at,
        expires_at=_parse_expiry(user_info.get("exp_date")),
    )


class XtreamStatusClient:
    def __init__(self, http_client: Optional[httpx.AsyncClient] = None):
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.CAPACITY_FETCH_TIMEOUT),
            headers={"User-Agent": settings.XTREAM_USER_AGENT},
            follow_redirects=True,
        )

    async def close(self):
        await self.http_client.aclose()

    async def fetch_snapshot(self, credentials: XtreamCredentials) -> CapacitySnapshot:
        """Fetch the account's current connection usage; raises UpstreamUnreachable on any failure"""
        host = credentials.base_url.rstrip("/")
        params = {
            "username": credentials.username,
            "password": credentials.password,
        }
        try:
            response = await self.http_client.get(f"{host}/player_api.php", params=params)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            raise UpstreamUnreachable(f"Status request to {host} failed: {e}") from e
        except ValueError as e:
            raise UpstreamUnreachable(f"Invalid status payload from {host}: {e}") from e

        user_info = data.get("user_info") if isinstance(data, dict) else None
        if not isinstance(user_info, dict):
            raise UpstreamUnreachable(f"Status payload from {host} has no user_info")

        snapshot = parse_user_info(user_info, fetched_at=time.time())
        logger.debug(
            f"Provider {host}: {snapshot.active_connections}/{snapshot.max_connections} connections")
        return snapshot

    async def fetch_for_context(self, context: ProviderContext) -> CapacitySnapshot:
        """Snapshot fetcher for the status cache; contexts without credentials cannot report capacity"""
        credentials = context.status_credentials
        if credentials is None:
            raise UpstreamUnreachable(
                f"{context.context_id} has no Xtream credentials to query capacity")
        return await self.fetch_snapshot(credentials)
