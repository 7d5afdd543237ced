from __future__ import annotations

import re
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

_TLD_RE = re.compile(r"\.[a-z]{2,}$", re.IGNORECASE)
_DEFAULT_PORTS = {"http": 80, "https": 443}


def ensure_scheme(url: str) -> str:
    url = (url or "").strip()
    if url and not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    return url


def has_valid_host(url: str) -> bool:
    """True when the URL has a hostname ending in an alphabetic TLD."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return False
    return bool(host) and "." in host and bool(_TLD_RE.search(host))


def normalize_url(url: str) -> str:
    """Canonical identity for a URL.

    Lowercases scheme and host, drops default ports, fragments, utm_*
    tracking parameters and a trailing slash on the path.
    """
    raw = (url or "").strip()
    try:
        parsed = urlparse(raw)
        port = parsed.port
    except ValueError:
        return raw
    if not parsed.netloc:
        return raw

    scheme = parsed.scheme.lower()
    host = (parsed.hostname or "").lower()
    if port and _DEFAULT_PORTS.get(scheme) != port:
        host = f"{host}:{port}"

    path = parsed.path or ""
    if path.endswith("/"):
        path = path.rstrip("/")

    query_items = [
        (k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True)
        if not k.lower().startswith("utm_")
    ]
    query = urlencode(query_items)
    return urlunparse((scheme, host, path, "", query, ""))


def extract_domain(url: str) -> str:
    """Hostname without a leading ``www.``, used for domain diversity."""
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return url
    if host.startswith("www."):
        host = host[4:]
    return host or url
