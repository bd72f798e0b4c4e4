"""
Stream monitor report.

Joins the proxy's stream list with its client list by stream_id and derives
per-stream uptime, bandwidth and display metadata plus global totals. The
report is a point-in-time snapshot; callers refresh it after stopping a
stream.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from config import settings
from errors import CommandFailed, UpstreamUnreachable
from formatting import format_bytes, format_timestamp, humanize_duration, truncate_url
from models import ClientConnection, ContentKind, DisplayInfo, StopResult, StreamSession
from proxy_client import M3uProxyClient

logger = logging.getLogger(__name__)

DisplayLookup = Callable[[ContentKind, int], Optional[DisplayInfo]]


@dataclass
class Report:
    streams: List[Dict[str, Any]] = field(default_factory=list)
    global_stats: Dict[str, Any] = field(default_factory=dict)
    system_stats: Dict[str, Any] = field(default_factory=dict)
    refresh_interval: int = settings.MONITOR_REFRESH_INTERVAL
    connection_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "streams": self.streams,
            "global_stats": self.global_stats,
            "system_stats": self.system_stats,
            "refresh_interval": self.refresh_interval,
            "connection_error": self.connection_error,
        }


def estimate_bandwidth_kbps(total_bytes: int, elapsed_seconds: float) -> float:
    """Average kbps over the whole session lifetime; 0 for a session with no elapsed time"""
    if elapsed_seconds <= 0:
        return 0
    return round((total_bytes * 8) / elapsed_seconds / 1000, 2)


def group_clients(clients: List[ClientConnection]) -> Dict[str, List[ClientConnection]]:
    grouped: Dict[str, List[ClientConnection]] = defaultdict(list)
    for client in clients:
        grouped[client.stream_id].append(client)
    return grouped


def build_global_stats(streams: List[Dict[str, Any]]) -> Dict[str, Any]:
    total_clients = sum(s.get("client_count", 0) for s in streams)
    total_bandwidth = sum(s.get("bandwidth_kbps", 0) for s in streams)
    active_streams = sum(1 for s in streams if s.get("status") == "active")

    return {
        "total_streams": len(streams),
        "active_streams": active_streams,
        "total_clients": total_clients,
        "total_bandwidth_kbps": round(total_bandwidth, 2),
        "avg_clients_per_stream": f"{total_clients / len(streams):.2f}" if streams else "0.00",
    }


def _client_row(client: ClientConnection, now: datetime) -> Dict[str, Any]:
    return {
        "ip": client.ip_address,
        "connected_at": format_timestamp(client.created_at),
        "duration": humanize_duration((now - client.created_at).total_seconds()),
        "bytes_received": format_bytes(client.bytes_served),
        "bandwidth": "N/A",
        "is_active": client.is_active(now),
    }


def _model_info(session: StreamSession, lookup: Optional[DisplayLookup]) -> Dict[str, Any]:
    ref: Optional[Tuple[ContentKind, int]] = session.content_ref
    if ref is None or lookup is None:
        return {}
    info = lookup(*ref)
    if info is None:
        return {}
    return {"title": info.title or "N/A", "logo": info.logo}


def _stream_row(session: StreamSession, clients: List[ClientConnection], now: datetime,
                lookup: Optional[DisplayLookup]) -> Dict[str, Any]:
    elapsed = (now - session.created_at).total_seconds()
    return {
        "stream_id": session.stream_id,
        "source_url": truncate_url(session.original_url, settings.URL_TRUNCATE_LENGTH),
        "current_url": session.current_url,
        "format": session.stream_type.upper(),
        "status": "active" if session.is_active else "inactive",
        "client_count": session.client_count,
        "bandwidth_kbps": estimate_bandwidth_kbps(session.total_bytes_served, elapsed),
        "bytes_transferred": format_bytes(session.total_bytes_served),
        "uptime": humanize_duration(elapsed),
        "buffer_size": "N/A",
        "started_at": format_timestamp(session.created_at),
        "process_running": session.is_active and session.client_count > 0,
        "model": _model_info(session, lookup),
        "clients": [_client_row(c, now) for c in clients],
        "has_failover": session.has_failover,
        "error_count": session.error_count,
        "segments_served": session.total_segments_served,
    }


def build_report(sessions: List[StreamSession], clients: List[ClientConnection],
                 now: Optional[datetime] = None, lookup: Optional[DisplayLookup] = None) -> Report:
    """Join sessions with their clients and compute per-stream and global stats"""
    now = now or datetime.now(timezone.utc)
    clients_by_stream = group_clients(clients)

    streams = [
        _stream_row(session, clients_by_stream.get(session.stream_id, []), now, lookup)
        for session in sessions
    ]
    return Report(streams=streams, global_stats=build_global_stats(streams))


class StreamMonitor:
    """Builds the operator-facing report from the live m3u-proxy registry"""

    def __init__(self, proxy_client: M3uProxyClient, lookup: Optional[DisplayLookup] = None):
        self.proxy_client = proxy_client
        self.lookup = lookup

    async def get_report(self, now: Optional[datetime] = None) -> Report:
        streams_result = await self.proxy_client.fetch_active_streams()
        clients_result = await self.proxy_client.fetch_active_clients()

        # Unreachable proxy is reported as such, never as an empty success
        for result in (streams_result, clients_result):
            if not result.success:
                error = result.error or "Unknown error connecting to m3u-proxy"
                return Report(
                    global_stats=build_global_stats([]),
                    connection_error=error,
                )

        return build_report(streams_result.items, clients_result.items, now=now, lookup=self.lookup)

    async def request_stop(self, stream_id: str) -> StopResult:
        """Issue a stop command; failures come back as a result, never raised"""
        try:
            success = await self.proxy_client.stop_stream(stream_id)
        except (CommandFailed, UpstreamUnreachable) as e:
            logger.error(f"Error stopping stream {stream_id}: {e.message}")
            return StopResult(success=False, message=e.message)

        if success:
            return StopResult(success=True, message=f"Stream {stream_id} stopped successfully.")
        return StopResult(success=False, message=f"Failed to stop stream {stream_id}.")

    async def stop_stream(self, stream_id: str) -> Tuple[StopResult, Report]:
        """Stop a stream, then refresh the report once the registry has answered"""
        result = await self.request_stop(stream_id)
        report = await self.get_report()
        return result, report
