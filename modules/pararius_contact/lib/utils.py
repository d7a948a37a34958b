from __future__ import annotations

from typing import Any
from urllib.parse import urldefrag, urljoin, urlsplit


def truthy(v: Any) -> bool:
    """
    Normalize common truthy inputs from env/kwargs.
    Accepts bools or strings like: '1', 'true', 'yes', 'on'.
    """
    if isinstance(v, bool):
        return v
    if v is None:
        return False
    if isinstance(v, (int, float)):
        return v != 0
    s = str(v).strip().lower()
    return s in {"1", "true", "yes", "on", "y", "t"}


def normalize_listing_url(href: str | None, base_url: str) -> str | None:
    """
    Turn a raw href from the search page into a ListingId.

    Relative links are resolved against `base_url`, the fragment is dropped and
    only http(s) URLs are accepted. Returns None for anything unusable.
    """
    raw = (href or "").strip()
    if not raw:
        return None
    absolute, _fragment = urldefrag(urljoin(base_url, raw))
    if urlsplit(absolute).scheme not in ("http", "https"):
        return None
    return absolute
