"""
Client for the m3u-proxy session registry API.

List calls report failure through FetchResult instead of raising, so the
monitor can tell "nothing is streaming" apart from "the proxy is unreachable".
"""

import logging
from typing import Any, Callable, Dict, List, Optional

import httpx

from config import settings
from errors import CommandFailed, UpstreamUnreachable
from models import ClientConnection, FetchResult, StreamSession

logger = logging.getLogger(__name__)


class M3uProxyClient:
    def __init__(self, base_url: Optional[str] = None, api_token: Optional[str] = None,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or settings.PROXY_API_URL).rstrip('/')
        token = api_token if api_token is not None else settings.PROXY_API_TOKEN
        headers = {"X-API-Token": token} if token else {}
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(settings.PROXY_REQUEST_TIMEOUT),
            headers=headers,
        )

    async def close(self):
        await self.http_client.aclose()

    async def _get_list(self, path: str, key: str, parse: Callable[[Dict[str, Any]], Any]) -> FetchResult:
        url = f"{self.base_url}{path}"
        try:
            response = await self.http_client.get(url)
            response.raise_for_status()
            payload = response.json()
            items: List[Any] = [parse(entry) for entry in payload.get(key) or []]
        except httpx.HTTPError as e:
            logger.error(f"Error fetching {path} from m3u-proxy: {e}")
            return FetchResult(success=False, error=f"Unable to connect to m3u-proxy: {e}")
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Invalid {path} payload from m3u-proxy: {e}")
            return FetchResult(success=False, error=f"Invalid response from m3u-proxy: {e}")
        return FetchResult(success=True, items=items)

    async def fetch_active_streams(self) -> FetchResult:
        return await self._get_list("/streams", "streams", StreamSession.from_api)

    async def fetch_active_clients(self) -> FetchResult:
        return await self._get_list("/clients", "clients", ClientConnection.from_api)

    async def stop_stream(self, stream_id: str) -> bool:
        """
        Ask the proxy to stop a stream and disconnect its clients.

        Returns False if the proxy no longer knows the stream. Raises
        CommandFailed if it rejects the request and UpstreamUnreachable if it
        cannot be reached.
        """
        try:
            response = await self.http_client.delete(f"{self.base_url}/streams/{stream_id}")
        except httpx.HTTPError as e:
            raise UpstreamUnreachable(f"Unable to connect to m3u-proxy: {e}") from e

        if response.status_code == 404:
            logger.info(f"Stream {stream_id} was already gone from m3u-proxy")
            return False
        if response.is_error:
            detail = response.text
            try:
                detail = response.json().get("detail", detail)
            except (ValueError, AttributeError):
                pass
            raise CommandFailed(
                f"m3u-proxy refused to stop stream {stream_id}: {detail}", stream_id=stream_id)
        return True
