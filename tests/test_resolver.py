"""
Tests for playlist alias selection and URL transformation.

Covers:
- primary preferred when it has headroom
- priority-ordered, greedy alias failover
- fallback to a saturated primary
- fail-closed handling of unreachable status APIs
- alias delegation and broken alias references
- custom URL bypass and alias URL rewriting
"""
# Add src to path first
import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

import httpx
import pytest

from catalog import Catalog
from errors import NoEffectiveProvider, NotFound, UpstreamUnreachable
from models import (
    AliasProvider,
    CapacitySnapshot,
    ContentItem,
    ContentKind,
    PrimaryProvider,
    XtreamCredentials,
)
from resolver import AliasResolver
from status_cache import ProviderStatusCache
from url_transform import rewrite_xtream_url, transform
from xtream_client import XtreamStatusClient

PRIMARY_CREDS = XtreamCredentials("http://primary.tv", "main", "secret")
ALIAS1_CREDS = XtreamCredentials("http://backup1.tv", "b1", "p1")
ALIAS2_CREDS = XtreamCredentials("http://backup2.tv:8080", "b2", "p2")
CHANNEL_URL = "http://primary.tv/live/main/secret/1001.ts"


class FakeStatusSource:
    """Status fetcher answering from a context_id -> (active, max) table"""

    def __init__(self, capacities):
        self.capacities = capacities
        self.calls = []

    async def __call__(self, context):
        self.calls.append(context.context_id)
        value = self.capacities.get(context.context_id)
        if value is None:
            raise UpstreamUnreachable(f"{context.context_id} did not answer")
        active, maximum = value
        return CapacitySnapshot(active_connections=active, max_connections=maximum, fetched_at=0.0)


def build_catalog():
    catalog = Catalog()
    catalog.add_provider(PrimaryProvider(provider_id=1, name="Main", credentials=PRIMARY_CREDS))
    catalog.add_alias(AliasProvider(alias_id=1, primary_id=1, priority=1, credentials=ALIAS1_CREDS))
    catalog.add_alias(AliasProvider(alias_id=2, primary_id=1, priority=2, credentials=ALIAS2_CREDS))
    catalog.add_item(ContentItem(kind=ContentKind.CHANNEL, item_id=10, provider_id=1,
                                 url=CHANNEL_URL, name="News"))
    return catalog


def make_resolver(catalog, capacities):
    source = FakeStatusSource(capacities)
    return AliasResolver(catalog, ProviderStatusCache(source, ttl=10)), source


class TestResolveOptimal:
    """Test alias selection against live capacity"""

    @pytest.fixture
    def catalog(self):
        return build_catalog()

    @pytest.fixture
    def channel(self, catalog):
        return catalog.get_item(ContentKind.CHANNEL, 10)

    @pytest.mark.asyncio
    async def test_primary_with_headroom_is_preferred(self, catalog, channel):
        resolver, source = make_resolver(catalog, {"playlist:1": (1, 5), "alias:1": (0, 5)})

        resolved = await resolver.resolve_optimal(channel)

        assert resolved.context.context_id == "playlist:1"
        assert resolved.url == CHANNEL_URL
        assert source.calls == ["playlist:1"]

    @pytest.mark.asyncio
    async def test_skips_saturated_alias_for_next_priority(self, catalog, channel):
        resolver, _ = make_resolver(catalog, {
            "playlist:1": (5, 5),
            "alias:1": (3, 3),
            "alias:2": (1, 5),
        })

        resolved = await resolver.resolve_optimal(channel)

        assert resolved.provider_context_id == "alias:2"
        assert resolved.url == "http://backup2.tv:8080/live/b2/p2/1001.ts"

    @pytest.mark.asyncio
    async def test_first_alias_with_headroom_stops_the_walk(self, catalog, channel):
        resolver, source = make_resolver(catalog, {
            "playlist:1": (5, 5),
            "alias:1": (0, 2),
            "alias:2": (0, 5),
        })

        resolved = await resolver.resolve_optimal(channel)

        assert resolved.provider_context_id == "alias:1"
        assert "alias:2" not in source.calls

    @pytest.mark.asyncio
    async def test_falls_back_to_saturated_primary(self, catalog, channel):
        resolver, _ = make_resolver(catalog, {
            "playlist:1": (5, 5),
            "alias:1": (3, 3),
            "alias:2": (9, 5),
        })

        resolved = await resolver.resolve_optimal(channel)

        assert resolved.provider_context_id == "playlist:1"
        assert resolved.url == CHANNEL_URL

    @pytest.mark.asyncio
    async def test_unreachable_status_is_no_headroom(self, catalog, channel):
        resolver, source = make_resolver(catalog, {"alias:2": (0, 1)})

        resolved = await resolver.resolve_optimal(channel)

        # primary and alias 1 never answer, so alias 2 wins
        assert resolved.provider_context_id == "alias:2"
        assert source.calls == ["playlist:1", "alias:1", "alias:2"]

    @pytest.mark.asyncio
    async def test_everything_unreachable_returns_primary(self, catalog, channel):
        resolver, _ = make_resolver(catalog, {})

        resolved = await resolver.resolve_optimal(channel)

        assert resolved.provider_context_id == "playlist:1"

    @pytest.mark.asyncio
    async def test_disabled_alias_is_never_selected(self, catalog, channel):
        catalog.aliases[1].enabled = False
        resolver, source = make_resolver(catalog, {
            "playlist:1": (5, 5),
            "alias:1": (0, 10),
            "alias:2": (5, 5),
        })

        resolved = await resolver.resolve_optimal(channel)

        assert resolved.provider_context_id == "playlist:1"
        assert "alias:1" not in source.calls

    @pytest.mark.asyncio
    async def test_unlimited_alias_has_headroom(self, catalog, channel):
        resolver, _ = make_resolver(catalog, {
            "playlist:1": (2, 2),
            "alias:1": (40, 0),
        })

        resolved = await resolver.resolve_optimal(channel)

        assert resolved.provider_context_id == "alias:1"

    @pytest.mark.asyncio
    async def test_equal_priority_breaks_ties_by_id(self, catalog, channel):
        catalog.aliases.clear()
        catalog.add_alias(AliasProvider(alias_id=7, primary_id=1, priority=1, credentials=ALIAS1_CREDS))
        catalog.add_alias(AliasProvider(alias_id=3, primary_id=1, priority=1, credentials=ALIAS2_CREDS))
        resolver, _ = make_resolver(catalog, {
            "playlist:1": (1, 1),
            "alias:7": (0, 1),
            "alias:3": (0, 1),
        })

        resolved = await resolver.resolve_optimal(channel)

        assert resolved.provider_context_id == "alias:3"

    @pytest.mark.asyncio
    async def test_custom_url_bypasses_routing(self, catalog):
        item = catalog.add_item(ContentItem(
            kind=ContentKind.CHANNEL, item_id=11, provider_id=1,
            url=CHANNEL_URL, url_custom="http://mine.example/custom.m3u8"))
        resolver, source = make_resolver(catalog, {"playlist:1": (5, 5), "alias:1": (0, 5)})

        resolved = await resolver.resolve_optimal(item)

        assert resolved.url == "http://mine.example/custom.m3u8"
        assert source.calls == []

    @pytest.mark.asyncio
    async def test_item_without_playlist_raises(self, catalog):
        orphan = catalog.add_item(ContentItem(kind=ContentKind.EPISODE, item_id=5, url="http://x/e.mkv"))
        resolver, _ = make_resolver(catalog, {})

        with pytest.raises(NoEffectiveProvider):
            await resolver.resolve_optimal(orphan)

    @pytest.mark.asyncio
    async def test_unknown_item_raises_not_found(self, catalog):
        resolver, _ = make_resolver(catalog, {})

        with pytest.raises(NotFound):
            await resolver.resolve_by_id(ContentKind.CHANNEL, 999)

    @pytest.mark.asyncio
    async def test_episode_failover_rewrites_series_url(self, catalog):
        episode = catalog.add_item(ContentItem(
            kind=ContentKind.EPISODE, item_id=20, provider_id=1,
            url="http://primary.tv/series/main/secret/555.mkv", title="Pilot"))
        resolver, _ = make_resolver(catalog, {"playlist:1": (1, 1), "alias:1": (0, 1)})

        resolved = await resolver.resolve_by_id(ContentKind.EPISODE, 20)

        assert resolved.url == "http://backup1.tv/series/b1/p1/555.mkv"
        assert episode.url == "http://primary.tv/series/main/secret/555.mkv"

    @pytest.mark.asyncio
    async def test_unexpected_status_error_is_no_headroom(self, catalog, channel):
        source = FakeStatusSource({"alias:1": (0, 1)})

        async def fetcher(context):
            if context.context_id == "playlist:1":
                raise RuntimeError("bad payload")
            return await source(context)

        resolver = AliasResolver(catalog, ProviderStatusCache(fetcher, ttl=10))

        resolved = await resolver.resolve_optimal(channel)

        assert resolved.provider_context_id == "alias:1"


class TestXtreamStatusPayloads:
    """Test routing against player_api.php payloads that are full or malformed"""

    @pytest.fixture
    def catalog(self):
        return build_catalog()

    def make_resolver(self, catalog, primary_user_info):
        def handler(request):
            if request.url.host == "primary.tv":
                return httpx.Response(200, json={"user_info": primary_user_info})
            return httpx.Response(200, json={"user_info": {
                "active_cons": "0", "max_connections": "2", "exp_date": None}})

        client = XtreamStatusClient(http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        return AliasResolver(catalog, ProviderStatusCache(client.fetch_for_context, ttl=10))

    @pytest.mark.asyncio
    async def test_out_of_range_expiry_still_fails_over(self, catalog):
        resolver = self.make_resolver(catalog, {
            "active_cons": "1", "max_connections": "1", "exp_date": "99999999999999999"})

        resolved = await resolver.resolve_by_id(ContentKind.CHANNEL, 10)

        assert resolved.provider_context_id == "alias:1"
        assert resolved.url == "http://backup1.tv/live/b1/p1/1001.ts"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("max_connections", [None, "", "unlimited"])
    async def test_malformed_limit_is_not_unlimited(self, catalog, max_connections):
        resolver = self.make_resolver(catalog, {
            "active_cons": "3", "max_connections": max_connections, "exp_date": None})

        resolved = await resolver.resolve_by_id(ContentKind.CHANNEL, 10)

        assert resolved.provider_context_id == "alias:1"

    @pytest.mark.asyncio
    async def test_explicit_zero_limit_is_unlimited(self, catalog):
        resolver = self.make_resolver(catalog, {
            "active_cons": "40", "max_connections": "0", "exp_date": None})

        resolved = await resolver.resolve_by_id(ContentKind.CHANNEL, 10)

        assert resolved.provider_context_id == "playlist:1"
        assert resolved.url == CHANNEL_URL


class TestAliasDelegation:
    """Test aliases that point at another provider"""

    @pytest.mark.asyncio
    async def test_delegating_alias_uses_target_capacity_and_credentials(self):
        catalog = build_catalog()
        catalog.aliases.clear()
        other = XtreamCredentials("http://other.tv", "o", "op")
        catalog.add_provider(PrimaryProvider(provider_id=9, credentials=other))
        catalog.add_alias(AliasProvider(alias_id=4, primary_id=1, priority=1,
                                        effective_provider_id="playlist:9"))
        resolver, source = make_resolver(catalog, {"playlist:1": (1, 1), "playlist:9": (0, 3)})

        resolved = await resolver.resolve_by_id(ContentKind.CHANNEL, 10)

        assert resolved.provider_context_id == "alias:4"
        assert resolved.url == "http://other.tv/live/o/op/1001.ts"
        assert source.calls == ["playlist:1", "playlist:9"]
        # the registered alias is left untouched
        assert catalog.aliases[4].credentials is None

    @pytest.mark.asyncio
    async def test_broken_alias_reference_is_skipped(self):
        catalog = build_catalog()
        catalog.aliases.clear()
        catalog.add_alias(AliasProvider(alias_id=4, primary_id=1, priority=1,
                                        effective_provider_id="playlist:404"))
        catalog.add_alias(AliasProvider(alias_id=5, primary_id=1, priority=2, credentials=ALIAS1_CREDS))
        resolver, _ = make_resolver(catalog, {"playlist:1": (1, 1), "alias:5": (0, 1)})

        resolved = await resolver.resolve_by_id(ContentKind.CHANNEL, 10)

        assert resolved.provider_context_id == "alias:5"

    def test_delegation_cycle_has_no_effective_context(self):
        catalog = build_catalog()
        a = catalog.add_alias(AliasProvider(alias_id=4, primary_id=1, effective_provider_id="alias:5"))
        catalog.add_alias(AliasProvider(alias_id=5, primary_id=1, effective_provider_id="alias:4"))

        assert catalog.effective_context(a) is None

    def test_alias_with_credentials_is_its_own_context(self):
        catalog = build_catalog()
        alias = catalog.aliases[1]
        assert catalog.effective_context(alias) is alias


class TestTransform:
    """Test playable URL construction"""

    @pytest.fixture
    def alias(self):
        return AliasProvider(alias_id=1, primary_id=1, credentials=ALIAS1_CREDS,
                             source_credentials=PRIMARY_CREDS)

    def test_custom_url_wins_for_every_context(self, alias):
        item = ContentItem(kind=ContentKind.CHANNEL, item_id=1, url=CHANNEL_URL,
                           url_custom="http://custom/stream")
        primary = PrimaryProvider(provider_id=1, credentials=PRIMARY_CREDS)

        assert transform(item, None) == "http://custom/stream"
        assert transform(item, primary) == "http://custom/stream"
        assert transform(item, alias) == "http://custom/stream"

    def test_primary_returns_canonical_url(self):
        item = ContentItem(kind=ContentKind.CHANNEL, item_id=1, url=CHANNEL_URL)
        assert transform(item, PrimaryProvider(provider_id=1)) == CHANNEL_URL

    def test_missing_url_is_empty(self, alias):
        item = ContentItem(kind=ContentKind.EPISODE, item_id=1)
        assert transform(item) == ""
        assert transform(item, PrimaryProvider(provider_id=1)) == ""
        assert transform(item, alias) == ""

    def test_alias_rewrites_host_and_credentials(self, alias):
        item = ContentItem(kind=ContentKind.CHANNEL, item_id=1, url=CHANNEL_URL)
        assert transform(item, alias) == "http://backup1.tv/live/b1/p1/1001.ts"

    def test_rewrite_keeps_query_string(self):
        url = "http://primary.tv/main/secret/1001?token=abc"
        assert rewrite_xtream_url(url, PRIMARY_CREDS, ALIAS2_CREDS) == \
            "http://backup2.tv:8080/b2/p2/1001?token=abc"

    def test_rewrite_leaves_foreign_urls_alone(self):
        url = "http://elsewhere.tv/live/x/y/1.ts"
        assert rewrite_xtream_url(url, PRIMARY_CREDS, ALIAS1_CREDS) == url

    def test_alias_registered_on_catalog_picks_up_primary_credentials(self):
        catalog = build_catalog()
        assert catalog.aliases[2].source_credentials == PRIMARY_CREDS

    def test_transform_is_deterministic(self, alias):
        item = ContentItem(kind=ContentKind.CHANNEL, item_id=1, url=CHANNEL_URL)
        assert len({transform(item, alias) for _ in range(5)}) == 1
