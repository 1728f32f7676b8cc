from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit

from url_normalize import url_normalize

from pulse.constants import TRACKING_PARAM_PREFIXES, TRACKING_PARAMS

_WWW_RE = re.compile(r"(^|//)www\.", re.IGNORECASE)
_TRACKING_RE = re.compile(r"[?&](utm_[^=&]*|fbclid|gclid|igshid|ref|ref_src)=[^&]*", re.IGNORECASE)


def _is_tracking(key: str) -> bool:
    k = key.lower()
    return k in TRACKING_PARAMS or k.startswith(TRACKING_PARAM_PREFIXES)


def _fallback_key(url: str) -> str:
    """Regex-based key for URLs that do not parse."""
    key = url.strip().lower().split("#", 1)[0]
    key = _TRACKING_RE.sub("", key)
    key = _WWW_RE.sub(r"\1", key)
    return key.rstrip("/?&")


def _strip_tracking(query: str) -> str:
    # Raw segments are kept as-is so the original parameter order survives
    kept = [
        pair
        for pair in query.split("&")
        if pair and not _is_tracking(pair.split("=", 1)[0])
    ]
    return "&".join(kept)


def canonicalize_url(url: str) -> str:
    """Canonical identity of an article URL, used as its cluster key.

    Scheme and lower-cased host without ``www.``, path without trailing ``/``,
    tracking parameters (``utm_*``, fbclid, gclid, igshid, ref, ref_src)
    removed and the remaining query kept in its original order. Fragments
    are dropped.
    """
    if not url or not url.strip():
        return ""
    raw = url.strip()
    try:
        parts = urlsplit(raw)
        base = urlsplit(url_normalize(urlunsplit((parts.scheme, parts.netloc, parts.path, "", ""))))
        host = (base.hostname or "").lower()
        port = base.port
    except (ValueError, TypeError, UnicodeError):
        return _fallback_key(raw)
    if not base.scheme or not host:
        return _fallback_key(raw)
    if host.startswith("www."):
        host = host[4:]
    netloc = f"{host}:{port}" if port else host
    path = base.path.rstrip("/")
    return urlunsplit((base.scheme.lower(), netloc, path, _strip_tracking(parts.query), ""))
