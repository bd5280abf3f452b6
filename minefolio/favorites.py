"""
Favorite players, held client-side in a cookie.

The cookie value is a URL-encoded JSON array of MCIDs. Favorites only
influence ordering; they never reach an upstream API or a cache key.
"""
import json
from typing import Iterable, List, Optional, Sequence, TypeVar
from urllib.parse import quote, unquote

FAVORITES_COOKIE_NAME = "minefolio_favorites"
MAX_FAVORITES = 50
COOKIE_MAX_AGE = 365 * 24 * 60 * 60  # 1 year

T = TypeVar("T")


def parse_favorites(raw: Optional[str]) -> List[str]:
    """Decode a cookie value; anything unreadable yields no favorites."""
    if not raw:
        return []
    try:
        parsed = json.loads(unquote(raw))
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    return [mcid for mcid in parsed if isinstance(mcid, str)]


def encode_favorites(favorites: Sequence[str]) -> str:
    """Cookie value for a favorites list (capped at MAX_FAVORITES)."""
    return quote(json.dumps(list(favorites[:MAX_FAVORITES]), separators=(",", ":")))


def add_to_favorites(current: List[str], mcid: str) -> List[str]:
    """Newest favorite goes first; adding an existing one is a no-op."""
    if mcid in current:
        return current
    return [mcid, *current][:MAX_FAVORITES]


def remove_from_favorites(current: List[str], mcid: str) -> List[str]:
    return [m for m in current if m != mcid]


def is_favorite(favorites: Iterable[str], mcid: str) -> bool:
    return mcid.lower() in {m.lower() for m in favorites}


def sort_by_favorite(items: Iterable[T], favorites: Iterable[str]) -> List[T]:
    """
    Move favorites ahead of everything else.

    Items expose `.identifier` (lowercase MCID). The sort is stable, so the
    incoming order is kept inside both partitions.
    """
    favs = {m.lower() for m in favorites}
    if not favs:
        return list(items)
    return sorted(items, key=lambda item: item.identifier not in favs)
