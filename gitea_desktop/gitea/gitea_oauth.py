"""
Browser-delegated OAuth2 authorization-code login with PKCE.

The redirect target is a one-shot HTTP listener on a fixed loopback address,
because Gitea only accepts redirect URIs registered ahead of time with the
OAuth application.
"""

from __future__ import annotations

import base64
import concurrent.futures
import enum
import hashlib
import html
import json
import logging
import secrets
import threading
import urllib.parse
from dataclasses import dataclass
from functools import partial
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Callable, Protocol

from gitea_desktop.core.best_effort import ignore_failure
from gitea_desktop.core.fallback import first_success
from gitea_desktop.gitea.gitea_client import HttpResponse, http_send, normalize_gitea_base_url

logger = logging.getLogger(__name__)

REDIRECT_HOST = "127.0.0.1"
REDIRECT_PORT = 17171
CALLBACK_PATH = "/oauth/callback"
REDIRECT_URI = f"http://{REDIRECT_HOST}:{REDIRECT_PORT}{CALLBACK_PATH}"
OAUTH_SCOPE = "read:user read:repository"
OAUTH_TIMEOUT_S = 180.0
TOKEN_TIMEOUT_S = 15.0

_SUCCESS_PAGE = (
    "<h1>Login complete</h1><p>Returning to the app…</p>"
    "<script>setTimeout(() => window.close(), 250);</script>"
)


class OAuthError(RuntimeError):
    def __init__(self, message: str, *, kind: str = "oauth_failed") -> None:
        super().__init__(message)
        self.kind = kind


class OAuthFlowState(enum.Enum):
    IDLE = "idle"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING = "exchanging"
    DONE = "done"
    FAILED = "failed"


class BrowserSurface(Protocol):
    """Interactive surface showing the authorization page."""

    def open(self, url: str, on_closed: Callable[[], None]) -> None: ...

    def close(self) -> None: ...


@dataclass(slots=True)
class PkceParams:
    state: str
    code_verifier: str
    code_challenge: str


@dataclass(frozen=True, slots=True)
class ExchangeShape:
    include_grant_type: bool
    use_json: bool
    use_basic_auth: bool


EXCHANGE_SHAPES: tuple[ExchangeShape, ...] = (
    ExchangeShape(include_grant_type=True, use_json=False, use_basic_auth=False),
    ExchangeShape(include_grant_type=False, use_json=False, use_basic_auth=False),
    ExchangeShape(include_grant_type=True, use_json=True, use_basic_auth=False),
    ExchangeShape(include_grant_type=True, use_json=False, use_basic_auth=True),
)


def base64_url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def code_challenge_for(code_verifier: str) -> str:
    return base64_url(hashlib.sha256(code_verifier.encode("ascii")).digest())


def generate_pkce() -> PkceParams:
    verifier = base64_url(secrets.token_bytes(32))
    return PkceParams(
        state=base64_url(secrets.token_bytes(16)),
        code_verifier=verifier,
        code_challenge=code_challenge_for(verifier),
    )


def authorize_url(base_url: str, client_id: str, pkce: PkceParams, *, redirect_uri: str = REDIRECT_URI) -> str:
    query = urllib.parse.urlencode(
        {
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "state": pkce.state,
            "code_challenge": pkce.code_challenge,
            "code_challenge_method": "S256",
            "scope": OAUTH_SCOPE,
        }
    )
    return f"{normalize_gitea_base_url(base_url)}/login/oauth/authorize?{query}"


def token_url(base_url: str) -> str:
    return f"{normalize_gitea_base_url(base_url)}/login/oauth/access_token"


# ---------- Callback listener ----------


class _CallbackHttpServer(HTTPServer):
    callback: "OAuthCallbackServer"


class _CallbackHandler(BaseHTTPRequestHandler):
    server: _CallbackHttpServer

    def do_GET(self) -> None:  # noqa: N802 - http.server naming
        parsed = urllib.parse.urlsplit(self.path)
        if parsed.path != CALLBACK_PATH:
            self._reply(404, "Not found", content_type="text/plain; charset=utf-8")
            return
        params = dict(urllib.parse.parse_qsl(parsed.query, keep_blank_values=True))
        self.server.callback.handle_params(params, self._reply)

    def log_message(self, format: str, *args) -> None:  # noqa: A002
        # Request lines carry the authorization code; keep only the status.
        logger.debug("OAuth callback listener: %s", args[1] if len(args) > 1 else "")

    def _reply(self, status: int, body: str, *, content_type: str = "text/html; charset=utf-8") -> None:
        data = body.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)


class OAuthCallbackServer:
    """Loopback listener that settles on the first callback request."""

    def __init__(self, expected_state: str, *, host: str = REDIRECT_HOST, port: int = REDIRECT_PORT) -> None:
        self._expected_state = expected_state
        self._host = host
        self._port = int(port)
        self._future: concurrent.futures.Future[str] = concurrent.futures.Future()
        self._lock = threading.Lock()
        self._httpd: _CallbackHttpServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int:
        if self._httpd is None:
            return self._port
        return int(self._httpd.server_address[1])

    def start(self) -> None:
        try:
            httpd = _CallbackHttpServer((self._host, self._port), _CallbackHandler)
        except OSError as exc:
            raise OAuthError(
                f"Could not listen on {self._host}:{self._port}. Is another login in progress?",
                kind="listener_unavailable",
            ) from exc
        httpd.callback = self
        self._httpd = httpd
        self._thread = threading.Thread(
            target=httpd.serve_forever,
            kwargs={"poll_interval": 0.1},
            name="gitea-oauth-callback",
            daemon=True,
        )
        self._thread.start()

    def handle_params(self, params: dict[str, str], reply: Callable[..., None]) -> None:
        if self._future.done():
            reply(409, "<h1>Login already handled</h1><p>You can close this window.</p>")
            return

        error = params.get("error")
        if error:
            detail = params.get("error_description") or error
            reply(400, f"<h1>Login failed</h1><p>{html.escape(detail)}</p>")
            self.fail(OAuthError(detail, kind="authorization_denied"))
            return

        code = params.get("code")
        state = params.get("state")
        if not code or not state or state != self._expected_state:
            reply(400, "<h1>Login failed</h1><p>Missing or invalid callback parameters.</p>")
            self.fail(OAuthError("OAuth callback missing code/state.", kind="invalid_callback"))
            return

        reply(200, _SUCCESS_PAGE)
        with self._lock:
            if not self._future.done():
                self._future.set_result(code)

    def fail(self, error: BaseException) -> None:
        with self._lock:
            if not self._future.done():
                self._future.set_exception(error)

    def wait(self, timeout_s: float) -> str:
        try:
            return self._future.result(timeout=timeout_s)
        except concurrent.futures.TimeoutError:
            self.fail(OAuthError("OAuth login timed out.", kind="timeout"))
            return self._future.result(timeout=0)

    def stop(self) -> None:
        httpd = self._httpd
        if httpd is None:
            return
        self._httpd = None
        ignore_failure(httpd.shutdown, description="stopping the OAuth listener")
        ignore_failure(httpd.server_close, description="closing the OAuth listener socket")
        if self._thread is not None:
            self._thread.join(timeout=2.0)
            self._thread = None


# ---------- Token exchange ----------


class _ExchangeAttemptFailed(Exception):
    pass


def _read_body(raw: HttpResponse) -> object:
    content_type = raw.header("Content-Type").lower()
    text = raw.body.decode("utf-8", errors="replace")
    if "application/json" in content_type:
        try:
            return json.loads(text)
        except ValueError:
            return text
    if "application/x-www-form-urlencoded" in content_type:
        return dict(urllib.parse.parse_qsl(text, keep_blank_values=True))
    return text


def _stringify(body: object) -> str:
    if isinstance(body, str):
        return body
    try:
        return json.dumps(body)
    except (TypeError, ValueError):
        return str(body)


def _extract_access_token(body: object) -> str:
    if not isinstance(body, dict):
        return ""
    for key in ("access_token", "token"):
        value = body.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def exchange_code(
    base_url: str,
    *,
    client_id: str,
    client_secret: str,
    code: str,
    code_verifier: str,
    redirect_uri: str = REDIRECT_URI,
    timeout_s: float = TOKEN_TIMEOUT_S,
) -> str:
    """Trade an authorization code for an access token, trying each request shape."""
    url = token_url(base_url)

    def attempt(shape: ExchangeShape) -> str:
        fields = {
            "client_id": client_id,
            "code": code,
            "redirect_uri": redirect_uri,
            "code_verifier": code_verifier,
        }
        if shape.include_grant_type:
            fields["grant_type"] = "authorization_code"
        if client_secret:
            fields["client_secret"] = client_secret

        headers = {"Accept": "application/json"}
        if shape.use_basic_auth and client_secret:
            basic = base64.b64encode(f"{client_id}:{client_secret}".encode("utf-8")).decode("ascii")
            headers["Authorization"] = f"Basic {basic}"
        if shape.use_json:
            headers["Content-Type"] = "application/json"
            body = json.dumps(fields).encode("utf-8")
        else:
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            body = urllib.parse.urlencode(fields).encode("utf-8")

        raw = http_send(url, method="POST", body=body, headers=headers, timeout_s=timeout_s)
        parsed = _read_body(raw)
        if not raw.ok:
            raise _ExchangeAttemptFailed(f"({raw.status}) {_stringify(parsed)}")
        token = _extract_access_token(parsed)
        if not token:
            raise _ExchangeAttemptFailed(
                f"({raw.status}) token response missing access_token: {_stringify(parsed)}"
            )
        return token

    try:
        return first_success(
            [partial(attempt, shape) for shape in EXCHANGE_SHAPES],
            catch=(_ExchangeAttemptFailed,),
            describe="OAuth token exchange",
        )
    except _ExchangeAttemptFailed as exc:
        raise OAuthError(
            f"OAuth token exchange failed: {exc}. "
            "Check that Client ID, Client Secret, and Redirect URL match exactly.",
            kind="exchange_failed",
        ) from None


# ---------- Flow ----------


class OAuthPkceAuthenticator:
    """Runs one PKCE login at a time. ``login`` blocks until a token or an error."""

    def __init__(
        self,
        browser: BrowserSurface,
        *,
        host: str = REDIRECT_HOST,
        port: int = REDIRECT_PORT,
        timeout_s: float = OAUTH_TIMEOUT_S,
        token_timeout_s: float = TOKEN_TIMEOUT_S,
    ) -> None:
        self._browser = browser
        self._host = host
        self._port = int(port)
        self._timeout_s = float(timeout_s)
        self._token_timeout_s = float(token_timeout_s)
        self._state = OAuthFlowState.IDLE

    @property
    def state(self) -> OAuthFlowState:
        return self._state

    def login(self, base_url: str, client_id: str, client_secret: str | None) -> str:
        secret = str(client_secret or "").strip()
        if not secret:
            raise OAuthError("OAuth client secret is required.", kind="missing_secret")
        client = str(client_id or "").strip()
        if not client:
            raise OAuthError("OAuth client ID is required.", kind="missing_client_id")

        pkce = generate_pkce()
        redirect_uri = f"http://{self._host}:{self._port}{CALLBACK_PATH}"
        code = self._authorize(base_url, client, pkce, redirect_uri)

        self._state = OAuthFlowState.EXCHANGING
        try:
            token = exchange_code(
                base_url,
                client_id=client,
                client_secret=secret,
                code=code,
                code_verifier=pkce.code_verifier,
                redirect_uri=redirect_uri,
                timeout_s=self._token_timeout_s,
            )
        except Exception:
            self._state = OAuthFlowState.FAILED
            raise
        self._state = OAuthFlowState.DONE
        return token

    def _authorize(self, base_url: str, client_id: str, pkce: PkceParams, redirect_uri: str) -> str:
        url = authorize_url(base_url, client_id, pkce, redirect_uri=redirect_uri)
        server = OAuthCallbackServer(pkce.state, host=self._host, port=self._port)
        try:
            server.start()
        except OAuthError:
            self._state = OAuthFlowState.FAILED
            raise

        self._state = OAuthFlowState.AWAITING_CALLBACK
        try:
            self._browser.open(
                url,
                lambda: server.fail(OAuthError("OAuth window was closed.", kind="window_closed")),
            )
            return server.wait(self._timeout_s)
        except Exception:
            self._state = OAuthFlowState.FAILED
            raise
        finally:
            ignore_failure(self._browser.close, description="closing the OAuth browser")
            server.stop()
