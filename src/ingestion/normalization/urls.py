"""URL canonicalization shared by extractors, normalization and pagination."""

from typing import Optional, Sequence
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

TRACKING_PARAMS: Sequence[str] = ("fbclid", "gclid", "mc_cid", "mc_eid", "yclid")


def _is_tracking_param(name: str, tracking_params: Sequence[str]) -> bool:
    key = name.lower()
    return key.startswith("utm_") or key in tracking_params


def normalize_url(
    url: Optional[str],
    base_url: Optional[str] = None,
    *,
    tracking_params: Sequence[str] = TRACKING_PARAMS,
) -> Optional[str]:
    """
    Canonicalize a URL.

    - resolves relative URLs against base_url when one is given
    - lowercases scheme and host
    - drops utm_* and other tracking parameters, and the fragment
    - strips the trailing slash

    A relative URL with no base comes back as its cleaned path plus query.
    Empty input yields None.
    """
    url = (url or "").strip()
    if not url:
        return None

    if base_url and not urlparse(url).netloc:
        url = urljoin(base_url, url)

    try:
        parts = urlparse(url)
    except ValueError:
        return url

    query_pairs = [
        (k, v)
        for (k, v) in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(k, tracking_params)
    ]
    query = urlencode(query_pairs, doseq=True)
    path = parts.path.rstrip("/")

    if not parts.netloc:
        return f"{path}?{query}" if query else (path or "/")

    scheme = (parts.scheme or "https").lower()
    netloc = parts.netloc.lower()
    if netloc.endswith(":80") and scheme == "http":
        netloc = netloc[:-3]
    if netloc.endswith(":443") and scheme == "https":
        netloc = netloc[:-4]

    return urlunparse((scheme, netloc, path, "", query, ""))


def origin_of(url: str) -> str:
    """Return scheme://host for a URL."""
    parts = urlparse(url)
    return f"{(parts.scheme or 'https').lower()}://{parts.netloc.lower()}"


def same_origin(a: str, b: str) -> bool:
    return origin_of(a) == origin_of(b)
