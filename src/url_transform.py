"""
Build the playable URL for a content item under a provider context.

A custom URL on the item always wins and is returned untouched. Under an
alias context the item's URL is rewritten from the primary playlist's Xtream
host and credentials to the alias's. Everything here is deterministic.
"""

from typing import Callable, Dict, Optional
from urllib.parse import urlsplit, urlunsplit

from models import AliasProvider, ContentItem, ContextType, ProviderContext, XtreamCredentials


def rewrite_xtream_url(url: str, source: XtreamCredentials, target: XtreamCredentials) -> str:
    """
    Swap the host and the username/password path segments of an Xtream URL.

    e.g. http://a.tv/live/user/pass/10.ts -> http://b.tv/live/user2/pass2/10.ts
    """
    source_base = source.base_url.rstrip('/')
    target_base = target.base_url.rstrip('/')
    if url.startswith(source_base + '/'):
        url = target_base + url[len(source_base):]

    parts = urlsplit(url)
    segments = parts.path.split('/')
    for i in range(len(segments) - 1):
        if segments[i] == source.username and segments[i + 1] == source.password:
            segments[i] = target.username
            segments[i + 1] = target.password
            break

    return urlunsplit(parts._replace(path='/'.join(segments)))


def _primary_url(item: ContentItem, context: ProviderContext) -> str:
    return item.url or ''


def _alias_url(item: ContentItem, alias: AliasProvider) -> str:
    if not item.url:
        return ''
    if alias.source_credentials is None or alias.credentials is None:
        return item.url
    return rewrite_xtream_url(item.url, alias.source_credentials, alias.credentials)


_TRANSFORMS: Dict[ContextType, Callable[[ContentItem, ProviderContext], str]] = {
    ContextType.PRIMARY: _primary_url,
    ContextType.ALIAS: _alias_url,
}


def transform(item: ContentItem, context: Optional[ProviderContext] = None) -> str:
    """Playable URL for the item under the given context"""
    # Custom URLs are never rewritten
    if item.url_custom:
        return item.url_custom
    if context is None:
        return item.url or ''
    return _TRANSFORMS[context.context_type](item, context)
