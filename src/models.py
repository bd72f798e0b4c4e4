"""
Data shapes shared by the routing engine and the stream monitor.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

# A client counts as currently active if it fetched data within this window
CLIENT_ACTIVE_WINDOW_SECONDS = 30


class ContentKind(str, Enum):
    CHANNEL = "channel"
    EPISODE = "episode"


class ContextType(str, Enum):
    PRIMARY = "playlist"
    ALIAS = "alias"


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 string or epoch number into an aware UTC datetime"""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class XtreamCredentials:
    base_url: str
    username: str
    password: str


@dataclass
class ContentItem:
    kind: ContentKind
    item_id: int
    # Owning playlist; None when the item is orphaned
    provider_id: Optional[int] = None
    url: Optional[str] = None
    url_custom: Optional[str] = None
    name: Optional[str] = None
    name_custom: Optional[str] = None
    title: Optional[str] = None
    logo: Optional[str] = None


@dataclass
class PrimaryProvider:
    provider_id: int
    name: str = ""
    credentials: Optional[XtreamCredentials] = None
    context_type: ContextType = field(default=ContextType.PRIMARY, init=False)

    @property
    def context_id(self) -> str:
        return f"{self.context_type.value}:{self.provider_id}"

    @property
    def status_credentials(self) -> Optional[XtreamCredentials]:
        return self.credentials


@dataclass
class AliasProvider:
    alias_id: int
    primary_id: int
    name: str = ""
    priority: int = 0
    enabled: bool = True
    credentials: Optional[XtreamCredentials] = None
    # Credentials of the primary, used as the rewrite source for URLs
    source_credentials: Optional[XtreamCredentials] = None
    # Context id this alias delegates to when it has no credentials of its own
    effective_provider_id: Optional[str] = None
    context_type: ContextType = field(default=ContextType.ALIAS, init=False)

    @property
    def context_id(self) -> str:
        return f"{self.context_type.value}:{self.alias_id}"

    @property
    def status_credentials(self) -> Optional[XtreamCredentials]:
        return self.credentials


ProviderContext = Union[PrimaryProvider, AliasProvider]


@dataclass
class CapacitySnapshot:
    active_connections: int
    # 0 means unlimited
    max_connections: int
    fetched_at: float
    expires_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "active_connections": self.active_connections,
            "max_connections": self.max_connections,
            "fetched_at": self.fetched_at,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CapacitySnapshot":
        expires_at = data.get("expires_at")
        return cls(
            active_connections=int(data["active_connections"]),
            max_connections=int(data["max_connections"]),
            fetched_at=float(data["fetched_at"]),
            expires_at=parse_timestamp(expires_at) if expires_at else None,
        )


@dataclass
class DisplayInfo:
    title: Optional[str] = None
    logo: Optional[str] = None


@dataclass
class StreamSession:
    stream_id: str
    original_url: str
    created_at: datetime
    current_url: Optional[str] = None
    stream_type: str = ""
    is_active: bool = True
    client_count: int = 0
    total_bytes_served: int = 0
    total_segments_served: int = 0
    error_count: int = 0
    has_failover: bool = False
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def content_ref(self) -> Optional[Tuple[ContentKind, int]]:
        """(kind, id) of the originating content item, if the metadata names one"""
        kind = self.metadata.get("type")
        item_id = self.metadata.get("id")
        if kind is None or item_id is None:
            return None
        try:
            return ContentKind(kind), int(item_id)
        except ValueError:
            logger.debug(
                f"Ignoring unrecognised content metadata on stream {self.stream_id}: {kind}/{item_id}")
            return None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "StreamSession":
        return cls(
            stream_id=data["stream_id"],
            original_url=data.get("original_url") or "",
            current_url=data.get("current_url"),
            created_at=parse_timestamp(data["created_at"]),
            stream_type=data.get("stream_type") or "",
            is_active=bool(data.get("is_active", False)),
            client_count=int(data.get("client_count") or 0),
            total_bytes_served=int(data.get("total_bytes_served") or 0),
            total_segments_served=int(data.get("total_segments_served") or 0),
            error_count=int(data.get("error_count") or 0),
            has_failover=bool(data.get("has_failover", False)),
            metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
        )


@dataclass
class ClientConnection:
    stream_id: str
    ip_address: str
    created_at: datetime
    last_access: datetime
    bytes_served: int = 0

    def is_active(self, now: datetime) -> bool:
        return (now - self.last_access).total_seconds() < CLIENT_ACTIVE_WINDOW_SECONDS

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "ClientConnection":
        return cls(
            stream_id=data["stream_id"],
            ip_address=data.get("ip_address") or "unknown",
            created_at=parse_timestamp(data["created_at"]),
            last_access=parse_timestamp(data["last_access"]),
            bytes_served=int(data.get("bytes_served") or 0),
        )


@dataclass
class FetchResult:
    """Outcome of a registry list call; never conflates failure with empty success"""
    success: bool
    items: List[Any] = field(default_factory=list)
    error: Optional[str] = None


@dataclass
class StopResult:
    success: bool
    message: Optional[str] = None
