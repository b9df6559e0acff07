from __future__ import annotations

import os
import urllib.parse

from .constants import DEFAULT_PORT

DEFAULT_PROXY_URL = "socks://127.0.0.1:1080"
_SCHEMES = ("socks", "socks5", "socks5h")


def default_proxy_url() -> str:
    """Proxy URL from the SOCKS_PROXY environment variable, or the local default."""
    return os.environ.get("SOCKS_PROXY") or DEFAULT_PROXY_URL


def parse_proxy_url(url: str) -> tuple[str, int, str | None, str | None]:
    """Parse a socks://, socks5:// or socks5h:// URL (or bare host[:port]) into (host, port, username, password)."""
    if "://" not in url:
        url = f"socks://{url}"
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _SCHEMES:
        raise ValueError(f"Invalid SOCKS proxy URL scheme: {parsed.scheme}")
    if not parsed.hostname:
        raise ValueError("SOCKS proxy URL missing hostname")
    host = parsed.hostname
    port = parsed.port or DEFAULT_PORT
    username = urllib.parse.unquote(parsed.username) if parsed.username is not None else None
    password = urllib.parse.unquote(parsed.password) if parsed.password is not None else None
    return host, port, username, password
