"""
Capacity-aware playlist alias selection.

Picks which provider account serves a stream: the owning playlist when it has
spare connections, otherwise the first enabled alias (by priority) that does.
When nothing has headroom the owning playlist is returned anyway; streams
degrade onto a saturated provider rather than being refused.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional, Union

from capacity import has_headroom
from catalog import Catalog
from errors import UpstreamUnreachable
from models import AliasProvider, ContentItem, ContentKind, PrimaryProvider, ProviderContext
from status_cache import ProviderStatusCache
from url_transform import transform

logger = logging.getLogger(__name__)


@dataclass
class ResolvedStream:
    url: str
    context: Optional[ProviderContext]

    @property
    def provider_context_id(self) -> Optional[str]:
        return self.context.context_id if self.context else None


class AliasResolver:
    def __init__(self, catalog: Catalog, status_cache: ProviderStatusCache):
        self.catalog = catalog
        self.status_cache = status_cache

    async def _has_headroom(self, context: ProviderContext) -> bool:
        """Capacity check that fails closed when the status is unavailable"""
        try:
            snapshot = await self.status_cache.get_snapshot(context)
        except UpstreamUnreachable as e:
            logger.warning(f"No capacity information for {context.context_id}: {e.message}")
            return False
        return has_headroom(snapshot)

    async def get_available_alias(self, primary: PrimaryProvider) -> Optional[Union[PrimaryProvider, AliasProvider]]:
        """
        Return the primary if it has headroom, else the first enabled alias
        with headroom, else None.

        Aliases are walked greedily in priority order and the walk stops at
        the first match, so later aliases are never queried.
        """
        if await self._has_headroom(primary):
            return primary

        for alias in self.catalog.enabled_aliases(primary):
            effective = self.catalog.effective_context(alias)
            if effective is None:
                logger.warning(
                    f"Skipping {alias.context_id}: no effective provider behind it")
                continue

            if await self._has_headroom(effective):
                if alias.credentials is None and effective.status_credentials is not None:
                    # Delegating alias: rewrite URLs onto the provider it points at
                    alias = dataclasses.replace(alias, credentials=effective.status_credentials)
                logger.info(
                    f"Playlist {primary.provider_id} is saturated, using {alias.context_id} (priority {alias.priority})")
                return alias

        return None

    async def resolve_optimal(self, item: ContentItem) -> ResolvedStream:
        """
        Choose the URL and provider context for a content item.

        Raises NoEffectiveProvider when the item has no owning playlist.
        """
        if item.url_custom:
            # Custom URLs skip capacity checks entirely
            owner = self.catalog.providers.get(item.provider_id) if item.provider_id is not None else None
            return ResolvedStream(url=transform(item), context=owner)

        primary = self.catalog.effective_provider(item)
        chosen = await self.get_available_alias(primary)
        if chosen is None:
            logger.info(
                f"No capacity on playlist {primary.provider_id} or its aliases, falling back to the playlist")
            chosen = primary

        return ResolvedStream(url=transform(item, chosen), context=chosen)

    async def resolve_by_id(self, kind: ContentKind, item_id: int) -> ResolvedStream:
        return await self.resolve_optimal(self.catalog.get_item(kind, item_id))
