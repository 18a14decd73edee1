"""Browser-facing sign-in endpoints.

Handlers are intentionally thin:

1. Parse and validate HTTP-layer parameters.
2. Delegate business logic to ``RelyingPartyService`` (off the event loop,
   since the service does blocking back-channel I/O).
3. Return an appropriate Starlette ``Response`` type.

SECURITY NOTE
-------------
• No raw secrets (state, codes, tokens, client secrets, session ids) are
  ever logged.
• Every sign-in failure renders the same generic page; the detail lives in
  the service logs only.
• Correlation IDs, if present in ``request.state.correlation_id``, are
  included in INFO logs to aid troubleshooting.
"""

from __future__ import annotations

import html
import logging

from starlette.concurrency import run_in_threadpool
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from starlette.routing import Route

from oidc_rp.config import RelyingPartySettings
from oidc_rp.core.errors import ConfigError, FlowFailed
from oidc_rp.core.service import RelyingPartyService

_LOG = logging.getLogger("oidc-rp.servers.auth")

SIGN_IN_FAILED = "Sign-in failed"


def _html_page(title: str, body: str, status: int = 200) -> HTMLResponse:
    """Return a tiny status HTML page; *body* must already be escaped."""
    content = (
        "<!doctype html><html lang='en'>"
        "<head><meta charset='utf-8'><title>"
        f"{html.escape(title)}</title></head><body><h1>{html.escape(title)}</h1>"
        f"<p>{body}</p></body></html>"
    )
    return HTMLResponse(content, status_code=status)


def _sign_in_failed() -> HTMLResponse:
    return _html_page(
        SIGN_IN_FAILED,
        "We could not sign you in. <a href='/login'>Try again</a>.",
        400,
    )


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "-")


# --------------------------------------------------------------------------- #
# Public API                                                                  #
# --------------------------------------------------------------------------- #
def build_auth_routes(
    svc: RelyingPartyService,
    settings: RelyingPartySettings,
) -> list[Route]:
    """Return the sign-in routes bound to *svc*."""
    cookie_name = settings.session_cookie

    # ----- GET / --------------------------------------------------------- #
    async def _home(request: Request) -> Response:
        record = await run_in_threadpool(svc.current_session, request.cookies.get(cookie_name))
        if record is None:
            return _html_page("Not signed in", "<a href='/login'>Sign in</a>")
        return _html_page(
            "Signed in",
            f"Signed in as {html.escape(record.subject)}."
            "<form method='post' action='/logout'><button type='submit'>Sign out</button></form>",
        )

    # ----- GET /login ---------------------------------------------------- #
    async def _login(request: Request) -> Response:
        try:
            authorize_url = await run_in_threadpool(svc.start_login, settings.redirect_uri)
        except ConfigError as exc:
            _LOG.error("Cannot start sign-in: %s", exc)
            return _html_page("Sign-in unavailable", "Sign-in is not configured.", 500)

        _LOG.info("Sign-in started correlation_id=%s", _correlation_id(request))
        return RedirectResponse(authorize_url, status_code=302)

    # ----- GET /callback ------------------------------------------------- #
    async def _callback(request: Request) -> Response:
        params = request.query_params
        # provider-side errors first (e.g. access_denied, login_required)
        provider_error = params.get("error")
        if provider_error:
            _LOG.warning(
                "Provider returned error=%s correlation_id=%s",
                provider_error[:64],
                _correlation_id(request),
            )
            return _sign_in_failed()

        code = params.get("code")
        state = params.get("state")
        if not code or not state:
            _LOG.warning("Callback without code or state correlation_id=%s", _correlation_id(request))
            return _sign_in_failed()

        try:
            handle = await run_in_threadpool(
                svc.complete_login,
                code=code,
                state=state,
                correlation_id=_correlation_id(request),
            )
        except FlowFailed as exc:
            _LOG.info(
                "Sign-in failed reason=%s stage=%s correlation_id=%s",
                exc.reason,
                exc.stage,
                _correlation_id(request),
            )
            return _sign_in_failed()

        response = RedirectResponse(settings.post_login_url, status_code=302)
        response.set_cookie(
            cookie_name,
            handle.session_id,
            max_age=max(0, handle.expires_at - int(svc.clock())),
            path="/",
            httponly=True,
            secure=request.url.scheme == "https",
            samesite="lax",
        )
        _LOG.info("Sign-in succeeded correlation_id=%s", _correlation_id(request))
        return response

    # ----- POST /logout -------------------------------------------------- #
    async def _logout(request: Request) -> Response:
        await run_in_threadpool(svc.logout, request.cookies.get(cookie_name))
        response = RedirectResponse("/", status_code=303)
        response.delete_cookie(cookie_name, path="/")
        _LOG.info("Signed out correlation_id=%s", _correlation_id(request))
        return response

    # ----- GET /session -------------------------------------------------- #
    async def _session(request: Request) -> Response:
        record = await run_in_threadpool(svc.current_session, request.cookies.get(cookie_name))
        if record is None:
            return JSONResponse({"error": "not_authenticated"}, status_code=401)
        return JSONResponse({"subject": record.subject, "expires_at": record.expires_at})

    return [
        Route("/", _home, methods=["GET"]),
        Route("/login", _login, methods=["GET"]),
        Route("/callback", _callback, methods=["GET"]),
        Route("/logout", _logout, methods=["POST"]),
        Route("/session", _session, methods=["GET"]),
    ]
