from __future__ import annotations

import base64
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, field
from typing import Any, Callable

from gitea_desktop.core.fallback import FallbackExhausted, first_success

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"
USER_AGENT = "gitea-desktop"
REQUEST_TIMEOUT_S = 15.0
LISTING_CEILING = 1000
PAGE_SIZE = 50
MAX_PAGES = 20
SNIPPET_LIMIT = 600
REDACTED = "***"
_TOKEN_QUERY_KEYS = ("access_token", "token", "private_token")


@dataclass(slots=True)
class GiteaRepo:
    id: str
    owner: str
    name: str
    full_name: str
    clone_url: str
    ssh_url: str
    default_branch: str
    private: bool


@dataclass(slots=True)
class GiteaOwner:
    name: str
    display_name: str
    type: str  # user | org


@dataclass(slots=True)
class RepoOpenCounts:
    open_issues: int | None
    open_pulls: int | None


@dataclass(slots=True)
class CreateRepoInput:
    owner: str
    name: str
    private: bool
    description: str = ""
    auto_init: bool | None = None
    default_branch: str = ""
    gitignore_template: str = ""
    license_template: str = ""


@dataclass(slots=True)
class CreateBranchInput:
    owner: str
    repo: str
    from_branch: str
    new_branch: str


@dataclass(slots=True)
class HttpResponse:
    status: int
    url: str
    reason: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")


class GiteaClientError(RuntimeError):
    def __init__(self, message: str, *, kind: str = "unknown") -> None:
        super().__init__(message)
        self.kind = kind


class GiteaApiError(GiteaClientError):
    """Non-2xx response. ``url`` never carries a usable credential."""

    def __init__(self, status: int, url: str, body_snippet: str) -> None:
        super().__init__(
            f"Gitea API error {status} for {url}: {body_snippet or 'unknown error'}",
            kind="http",
        )
        self.status = int(status)
        self.url = url
        self.body_snippet = body_snippet


class GiteaResponseError(GiteaClientError):
    def __init__(self, message: str) -> None:
        super().__init__(message, kind="invalid_response")


def normalize_gitea_base_url(base_url: str) -> str:
    """Instance root without trailing slashes or a redundant ``/api/v1`` suffix."""
    text = str(base_url or "").strip().rstrip("/")
    parsed = urllib.parse.urlsplit(text)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise GiteaClientError("Server URL must start with http:// or https://.", kind="validation")
    path = parsed.path.rstrip("/")
    if path.endswith(API_PREFIX):
        path = path[: -len(API_PREFIX)].rstrip("/")
    return urllib.parse.urlunsplit((parsed.scheme, parsed.netloc, path, "", ""))


def redact_url(url: str) -> str:
    """Mask token-bearing query parameters so the URL is safe to log or show."""
    text = str(url or "")
    try:
        parsed = urllib.parse.urlsplit(text)
    except ValueError:
        return text
    if not parsed.query:
        return text
    pairs = urllib.parse.parse_qsl(parsed.query, keep_blank_values=True)
    masked = [(key, REDACTED if key in _TOKEN_QUERY_KEYS else value) for key, value in pairs]
    query = urllib.parse.urlencode(masked, safe="*")
    return urllib.parse.urlunsplit((parsed.scheme, parsed.netloc, parsed.path, query, parsed.fragment))


def body_snippet(body: bytes | str, *, limit: int = SNIPPET_LIMIT) -> str:
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else str(body or "")
    compact = " ".join(text.split())
    if len(compact) > limit:
        return compact[:limit] + "…"
    return compact


def _with_query(url: str, key: str, value: str) -> str:
    parsed = urllib.parse.urlsplit(url)
    pairs = [(k, v) for k, v in urllib.parse.parse_qsl(parsed.query, keep_blank_values=True) if k != key]
    pairs.append((key, value))
    return urllib.parse.urlunsplit(
        (parsed.scheme, parsed.netloc, parsed.path, urllib.parse.urlencode(pairs), parsed.fragment)
    )


def _quote(segment: str) -> str:
    return urllib.parse.quote(str(segment or ""), safe="")


def http_send(
    url: str,
    *,
    method: str = "GET",
    body: bytes | None = None,
    headers: dict[str, str] | None = None,
    timeout_s: float = REQUEST_TIMEOUT_S,
) -> HttpResponse:
    """Send one request. HTTP error statuses are returned, transport errors raise."""
    merged = {"Accept": "application/json", "User-Agent": USER_AGENT}
    merged.update(headers or {})
    request = urllib.request.Request(url=url, data=body, headers=merged, method=method.upper())
    try:
        with urllib.request.urlopen(request, timeout=timeout_s) as response:
            return HttpResponse(
                status=int(getattr(response, "status", 200) or 200),
                url=url,
                reason=str(getattr(response, "reason", "") or ""),
                body=response.read(),
                headers={str(k).lower(): str(v) for k, v in response.headers.items()},
            )
    except urllib.error.HTTPError as exc:
        try:
            data = exc.read() or b""
        except OSError:
            data = b""
        raw_headers = exc.headers.items() if exc.headers is not None else []
        return HttpResponse(
            status=int(exc.code),
            url=url,
            reason=str(exc.reason or ""),
            body=data,
            headers={str(k).lower(): str(v) for k, v in raw_headers},
        )


def _api_error(raw: HttpResponse) -> GiteaApiError:
    snippet = body_snippet(raw.body) or raw.reason
    return GiteaApiError(raw.status, redact_url(raw.url), snippet)


def _decode_json(raw: HttpResponse) -> Any:
    if not raw.body.strip():
        return None
    try:
        return json.loads(raw.body.decode("utf-8"))
    except ValueError as exc:
        raise GiteaResponseError(f"Failed to decode response from {redact_url(raw.url)}.") from exc


class GiteaClient:
    def __init__(self, base_url: str, token: str, *, timeout_s: float = REQUEST_TIMEOUT_S) -> None:
        token_text = str(token or "").strip()
        if not token_text:
            raise GiteaClientError("No Gitea token is configured.", kind="no_token")
        self._base_url = normalize_gitea_base_url(base_url)
        self._token = token_text
        self._timeout_s = max(0.5, float(timeout_s))

    @property
    def base_url(self) -> str:
        return self._base_url

    # ---------- Users / orgs ----------

    def get_current_user(self) -> dict[str, Any]:
        payload = self._request_json("/user")
        if not isinstance(payload, dict):
            raise GiteaResponseError("Unexpected user payload.")
        if payload.get("id") is None or not str(payload.get("login") or "").strip():
            raise GiteaResponseError("Gitea did not return a user id and login.")
        return payload

    def list_orgs(self) -> list[dict[str, Any]]:
        payload = self._request_json("/user/orgs")
        if not isinstance(payload, list):
            raise GiteaResponseError("Unexpected organization payload.")
        return [item for item in payload if isinstance(item, dict)]

    # ---------- Repositories ----------

    def list_repos(self) -> list[GiteaRepo]:
        merged: dict[str, dict[str, Any]] = {}
        for raw in self._fetch_listing("/user/repos"):
            merged[str(raw.get("id"))] = raw

        try:
            orgs = self.list_orgs()
        except GiteaClientError as exc:
            logger.warning("Could not list organizations: %s", exc)
            orgs = []

        for org in orgs:
            org_name = str(org.get("username") or "").strip()
            if not org_name:
                continue
            try:
                org_repos = self._fetch_org_listing(org_name)
            except (GiteaClientError, OSError) as exc:
                logger.warning("Skipping repositories of organization %s: %s", org_name, exc)
                continue
            for raw in org_repos:
                merged[str(raw.get("id"))] = raw

        return [self._map_repo(raw) for raw in merged.values()]

    def create_repo(self, req: CreateRepoInput) -> GiteaRepo:
        name = str(req.name or "").strip()
        if not name:
            raise GiteaClientError("Repository name is required.", kind="validation")
        owner = str(req.owner or "").strip()

        payload: dict[str, Any] = {"name": name, "private": bool(req.private)}
        if req.description:
            payload["description"] = req.description
        if isinstance(req.auto_init, bool):
            payload["auto_init"] = req.auto_init
        if req.default_branch:
            payload["default_branch"] = req.default_branch
        if req.gitignore_template:
            payload["gitignores"] = req.gitignore_template
        if req.license_template:
            payload["license"] = req.license_template

        try:
            created = self._post_repo(owner, payload)
        except GiteaApiError as exc:
            if exc.status not in {400, 422}:
                raise
            logger.debug("Repository payload rejected (%s); retrying with minimal payload", exc.status)
            created = self._post_repo(owner, {"name": name, "private": bool(req.private)})

        if not isinstance(created, dict):
            raise GiteaResponseError("Gitea did not return repository details.")
        if not isinstance(created.get("owner"), dict):
            created = {**created, "owner": {"login": owner}}
        if not created.get("name"):
            created = {**created, "name": name}
        return self._map_repo(created)

    def _post_repo(self, owner: str, payload: dict[str, Any]) -> Any:
        if not owner:
            return self._request_json("/user/repos", method="POST", payload=payload)
        return self._with_legacy_org_path(
            owner,
            lambda prefix: self._request_json(f"/{prefix}/{_quote(owner)}/repos", method="POST", payload=payload),
        )

    def get_repo_open_counts(self, owner: str, repo: str) -> RepoOpenCounts:
        base = f"/repos/{_quote(owner)}/{_quote(repo)}"
        return RepoOpenCounts(
            open_issues=self._open_count(f"{base}/issues?state=open&limit=1"),
            open_pulls=self._open_count(f"{base}/pulls?state=open&limit=1"),
        )

    def _open_count(self, path: str) -> int | None:
        raw = self._execute(path)
        if not raw.ok:
            return None
        header = raw.header("X-Total-Count").strip()
        if header.isdigit():
            return int(header)
        # Without the header only the first page is visible, so this undercounts.
        try:
            payload = _decode_json(raw)
        except GiteaResponseError:
            return None
        return len(payload) if isinstance(payload, list) else None

    # ---------- Branches ----------

    def list_branches(self, owner: str, repo: str) -> list[str]:
        base = f"/repos/{_quote(owner)}/{_quote(repo)}/branches"
        try:
            payload = self._request_json(f"{base}?limit={LISTING_CEILING}")
        except GiteaApiError as exc:
            if exc.status != 404:
                raise
            payload = self._request_json(base)
        if not isinstance(payload, list):
            raise GiteaResponseError("Unexpected branch payload.")
        names: list[str] = []
        for item in payload:
            if isinstance(item, dict) and isinstance(item.get("name"), str) and item["name"]:
                names.append(item["name"])
        return names

    def create_branch(self, req: CreateBranchInput) -> None:
        new_branch = str(req.new_branch or "").strip()
        if not new_branch:
            raise GiteaClientError("Branch name is required.", kind="validation")
        base = f"/repos/{_quote(req.owner)}/{_quote(req.repo)}"

        raw = self._execute(f"{base}/git/refs/heads/{_quote(req.from_branch)}")
        if not raw.ok:
            raise _api_error(raw)
        payload = _decode_json(raw)
        ref_obj = payload[0] if isinstance(payload, list) and payload else payload
        sha = ""
        if isinstance(ref_obj, dict) and isinstance(ref_obj.get("object"), dict):
            value = ref_obj["object"].get("sha")
            sha = value if isinstance(value, str) else ""
        if not sha:
            raise GiteaResponseError("Could not determine base branch SHA.")

        self._request_json(
            f"{base}/git/refs",
            method="POST",
            payload={"ref": f"refs/heads/{new_branch}", "sha": sha},
        )

    # ---------- Tokens ----------

    @staticmethod
    def create_access_token(
        base_url: str,
        username: str,
        password: str,
        *,
        name: str,
        timeout_s: float = REQUEST_TIMEOUT_S,
    ) -> str:
        """Mint a personal access token with HTTP Basic credentials."""
        root = normalize_gitea_base_url(base_url)
        url = f"{root}{API_PREFIX}/users/{_quote(username)}/tokens"
        basic = base64.b64encode(f"{username}:{password}".encode("utf-8")).decode("ascii")
        raw = http_send(
            url,
            method="POST",
            body=json.dumps({"name": name}).encode("utf-8"),
            headers={"Authorization": f"Basic {basic}", "Content-Type": "application/json"},
            timeout_s=timeout_s,
        )
        if not raw.ok:
            raise _api_error(raw)
        payload = _decode_json(raw)
        if isinstance(payload, dict):
            for key in ("sha1", "token", "value"):
                value = payload.get(key)
                if isinstance(value, str) and value:
                    return value
        raise GiteaResponseError("Gitea API did not return a token.")

    # ---------- Internals ----------

    def _fetch_org_listing(self, org_name: str) -> list[dict[str, Any]]:
        return self._with_legacy_org_path(
            org_name,
            lambda prefix: self._fetch_listing(f"/{prefix}/{_quote(org_name)}/repos"),
        )

    @staticmethod
    def _with_legacy_org_path(org_name: str, call: Callable[[str], Any]) -> Any:
        try:
            return call("orgs")
        except GiteaApiError as exc:
            if exc.status != 404:
                raise
            logger.debug("Organization path not found for %s; trying legacy /org path", org_name)
            return call("org")

    def _fetch_listing(self, base_path: str) -> list[dict[str, Any]]:
        return first_success(
            [
                lambda: self._best_unpaged_listing(base_path),
                lambda: self._paged_listing(base_path),
            ],
            catch=(GiteaClientError,),
            describe=f"listing {base_path}",
        )

    def _best_unpaged_listing(self, base_path: str) -> list[dict[str, Any]]:
        best: list[dict[str, Any]] | None = None
        last_error: GiteaClientError | None = None
        for path in (base_path, f"{base_path}?limit={LISTING_CEILING}"):
            try:
                items = self._request_list(path)
            except GiteaClientError as exc:
                last_error = exc
                continue
            if best is None or len(items) >= len(best):
                best = items
        if best is None:
            raise last_error or GiteaResponseError(f"No usable listing for {base_path}.")
        return best

    def _paged_listing(self, base_path: str) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for page in range(1, MAX_PAGES + 1):
            try:
                batch = self._request_list(f"{base_path}?limit={PAGE_SIZE}&page={page}")
            except GiteaApiError as exc:
                if exc.status == 404 and page == 1:
                    return self._request_list(base_path)
                raise
            if not batch:
                break
            out.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
        return out

    def _request_list(self, path: str) -> list[dict[str, Any]]:
        payload = self._request_json(path)
        if not isinstance(payload, list):
            raise GiteaResponseError(f"Expected a list from {path.split('?', 1)[0]}.")
        return [item for item in payload if isinstance(item, dict)]

    def _request_json(self, path: str, *, method: str = "GET", payload: dict | None = None) -> Any:
        raw = self._execute(path, method=method, payload=payload)
        if not raw.ok:
            error = _api_error(raw)
            logger.debug("%s %s -> %s", method, error.url, error.status)
            raise error
        return _decode_json(raw)

    def _execute(self, path: str, *, method: str = "GET", payload: dict | None = None) -> HttpResponse:
        """Send with the auth-scheme chain, stopping at the first non-401 response."""
        url = self._api_url(path)
        body: bytes | None = None
        headers: dict[str, str] = {}
        if payload is not None:
            body = json.dumps(payload).encode("utf-8")
            headers["Content-Type"] = "application/json"

        def send(target: str, auth_header: str | None = None) -> HttpResponse:
            request_headers = dict(headers)
            if auth_header:
                request_headers["Authorization"] = auth_header
            return http_send(target, method=method, body=body, headers=request_headers, timeout_s=self._timeout_s)

        token = self._token
        attempts: list[Callable[[], HttpResponse]] = [
            lambda: send(url, f"token {token}"),
            lambda: send(url, f"Bearer {token}"),
            lambda: send(_with_query(url, "access_token", token)),
            lambda: send(_with_query(url, "token", token)),
        ]
        try:
            return first_success(
                attempts,
                accept=lambda raw: raw.status != 401,
                catch=(),
                describe=f"auth for {method} {redact_url(url)}",
            )
        except FallbackExhausted as exc:
            # Every scheme was refused; surface the final 401.
            return exc.last_result

    def _api_url(self, path_with_query: str) -> str:
        path = str(path_with_query or "")
        if not path.startswith("/"):
            path = "/" + path
        return f"{self._base_url}{API_PREFIX}{path}"

    @staticmethod
    def _map_repo(raw: dict[str, Any]) -> GiteaRepo:
        owner_obj = raw.get("owner")
        owner = str(owner_obj.get("login") or "") if isinstance(owner_obj, dict) else ""
        name = str(raw.get("name") or "")
        return GiteaRepo(
            id=str(raw.get("id")),
            owner=owner,
            name=name,
            full_name=str(raw.get("full_name") or f"{owner}/{name}"),
            clone_url=str(raw.get("clone_url") or ""),
            ssh_url=str(raw.get("ssh_url") or ""),
            default_branch=str(raw.get("default_branch") or "main"),
            private=bool(raw.get("private", False)),
        )
