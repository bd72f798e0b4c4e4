"""
In-memory catalog of playlists, playlist aliases and content items.

Stands in for the application database: it answers ownership questions
("which playlist serves this channel"), lists the aliases registered against
a playlist, follows alias delegation to an effective provider, and looks up
display metadata for the stream monitor.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from errors import NoEffectiveProvider, NotFound
from models import (
    AliasProvider,
    ContentItem,
    ContentKind,
    ContextType,
    DisplayInfo,
    PrimaryProvider,
    ProviderContext,
    XtreamCredentials,
)

logger = logging.getLogger(__name__)


class Catalog:
    def __init__(self):
        self.providers: Dict[int, PrimaryProvider] = {}
        self.aliases: Dict[int, AliasProvider] = {}
        self.items: Dict[Tuple[ContentKind, int], ContentItem] = {}
        self._display_lookups: Dict[ContentKind, Callable[[ContentItem], DisplayInfo]] = {
            ContentKind.CHANNEL: self._channel_display,
            ContentKind.EPISODE: self._episode_display,
        }

    def add_provider(self, provider: PrimaryProvider) -> PrimaryProvider:
        self.providers[provider.provider_id] = provider
        return provider

    def add_alias(self, alias: AliasProvider) -> AliasProvider:
        primary = self.providers.get(alias.primary_id)
        if alias.source_credentials is None and primary is not None:
            alias.source_credentials = primary.credentials
        self.aliases[alias.alias_id] = alias
        return alias

    def add_item(self, item: ContentItem) -> ContentItem:
        self.items[(item.kind, item.item_id)] = item
        return item

    def get_item(self, kind: ContentKind, item_id: int) -> ContentItem:
        item = self.items.get((kind, item_id))
        if item is None:
            raise NotFound(f"{kind.value} {item_id} not found")
        return item

    def get_provider(self, provider_id: int) -> PrimaryProvider:
        provider = self.providers.get(provider_id)
        if provider is None:
            raise NotFound(f"Playlist {provider_id} not found")
        return provider

    def effective_provider(self, item: ContentItem) -> PrimaryProvider:
        """The playlist that owns a content item"""
        if item.provider_id is None or item.provider_id not in self.providers:
            raise NoEffectiveProvider(
                f"{item.kind.value} {item.item_id} has no resolvable playlist")
        return self.providers[item.provider_id]

    def enabled_aliases(self, primary: PrimaryProvider) -> List[AliasProvider]:
        """Enabled aliases of a playlist, lowest priority number first, ties by id"""
        aliases = [
            alias for alias in self.aliases.values()
            if alias.primary_id == primary.provider_id and alias.enabled
        ]
        return sorted(aliases, key=lambda a: (a.priority, a.alias_id))

    def get_context(self, context_id: str) -> Optional[ProviderContext]:
        kind, _, raw_id = context_id.partition(":")
        try:
            key = int(raw_id)
        except ValueError:
            return None
        if kind == ContextType.PRIMARY.value:
            return self.providers.get(key)
        if kind == ContextType.ALIAS.value:
            return self.aliases.get(key)
        return None

    def effective_context(self, context: ProviderContext) -> Optional[ProviderContext]:
        """
        Follow alias delegation until reaching a context that can report capacity.

        Returns None for a broken reference or a delegation cycle.
        """
        current = context
        seen = set()
        while current.status_credentials is None:
            if current.context_type is ContextType.PRIMARY:
                return current
            seen.add(current.context_id)
            target = current.effective_provider_id
            if target is None or target in seen:
                return None
            current = self.get_context(target)
            if current is None:
                return None
        return current

    def display_info(self, kind: ContentKind, item_id: int) -> Optional[DisplayInfo]:
        item = self.items.get((kind, item_id))
        if item is None:
            return None
        info = self._display_lookups[kind](item)
        if not info.title and not info.logo:
            return None
        return info

    def _channel_display(self, item: ContentItem) -> DisplayInfo:
        return DisplayInfo(
            title=item.name_custom or item.name or item.title,
            logo=item.logo,
        )

    def _episode_display(self, item: ContentItem) -> DisplayInfo:
        return DisplayInfo(title=item.title, logo=item.logo)


# Catalog file schema
class CredentialsModel(BaseModel):
    url: str
    username: str
    password: str

    def to_credentials(self) -> XtreamCredentials:
        return XtreamCredentials(base_url=self.url, username=self.username, password=self.password)


class ProviderModel(BaseModel):
    id: int
    name: str = ""
    xtream: Optional[CredentialsModel] = None


class AliasModel(BaseModel):
    id: int
    playlist_id: int
    name: str = ""
    priority: int = 0
    enabled: bool = True
    xtream: Optional[CredentialsModel] = None
    effective_provider_id: Optional[str] = None


class ContentModel(BaseModel):
    id: int
    playlist_id: Optional[int] = None
    url: Optional[str] = None
    url_custom: Optional[str] = None
    name: Optional[str] = None
    name_custom: Optional[str] = None
    title: Optional[str] = None
    logo: Optional[str] = None

    def to_item(self, kind: ContentKind) -> ContentItem:
        return ContentItem(
            kind=kind,
            item_id=self.id,
            provider_id=self.playlist_id,
            url=self.url,
            url_custom=self.url_custom,
            name=self.name,
            name_custom=self.name_custom,
            title=self.title,
            logo=self.logo,
        )


class CatalogDocument(BaseModel):
    providers: List[ProviderModel] = Field(default_factory=list)
    aliases: List[AliasModel] = Field(default_factory=list)
    channels: List[ContentModel] = Field(default_factory=list)
    episodes: List[ContentModel] = Field(default_factory=list)


def build_catalog(document: CatalogDocument) -> Catalog:
    catalog = Catalog()
    for p in document.providers:
        catalog.add_provider(PrimaryProvider(
            provider_id=p.id,
            name=p.name,
            credentials=p.xtream.to_credentials() if p.xtream else None,
        ))
    for a in document.aliases:
        catalog.add_alias(AliasProvider(
            alias_id=a.id,
            primary_id=a.playlist_id,
            name=a.name,
            priority=a.priority,
            enabled=a.enabled,
            credentials=a.xtream.to_credentials() if a.xtream else None,
            effective_provider_id=a.effective_provider_id,
        ))
    for c in document.channels:
        catalog.add_item(c.to_item(ContentKind.CHANNEL))
    for e in document.episodes:
        catalog.add_item(e.to_item(ContentKind.EPISODE))
    return catalog


def load_catalog(path: Union[str, Path]) -> Catalog:
    """Load a catalog from a JSON file"""
    raw = Path(path).read_text(encoding="utf-8")
    catalog = build_catalog(CatalogDocument.model_validate_json(raw))
    logger.info(
        f"Loaded catalog from {path}: {len(catalog.providers)} playlists, "
        f"{len(catalog.aliases)} aliases, {len(catalog.items)} items")
    return catalog
