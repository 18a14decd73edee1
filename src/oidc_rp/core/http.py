"""Back-channel HTTP plumbing shared by the exchanger, JWKS cache and discovery.

Provider calls use a private :class:`requests.Session` that never stores
cookies and is always used with ``allow_redirects=False``.  Nothing from the
browser ever travels on this channel.
"""

from __future__ import annotations

from http.cookiejar import DefaultCookiePolicy
from typing import Any, Final

import requests

from oidc_rp.core.errors import TransportError

#: ``(connect, read)`` timeout in seconds for every provider call.
Timeout = tuple[float, float]
DEFAULT_TIMEOUT: Final[Timeout] = (5.0, 20.0)

USER_AGENT: Final[str] = "oidc-rp"


def new_http_session() -> requests.Session:
    """Return a cookie-less session for server-to-server provider calls."""
    session = requests.Session()
    session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))
    session.headers.update({"Accept": "application/json", "User-Agent": USER_AGENT})
    return session


def get_json(
    http: requests.Session,
    url: str,
    *,
    timeout: Timeout = DEFAULT_TIMEOUT,
    what: str = "document",
) -> dict[str, Any]:
    """GET *url* and return its JSON object body.

    Raises
    ------
    TransportError
        On network failure, a non-2xx status or a body that is not a JSON
        object.
    """
    try:
        resp = http.get(url, timeout=timeout, allow_redirects=False)
    except requests.RequestException as exc:
        raise TransportError(f"{what} request failed: {type(exc).__name__}") from exc
    if not 200 <= resp.status_code < 300:
        raise TransportError(f"{what} request returned HTTP {resp.status_code}")
    try:
        data = resp.json()
    except ValueError:
        raise TransportError(f"{what} response is not JSON") from None
    if not isinstance(data, dict):
        raise TransportError(f"{what} response is not a JSON object")
    return data
