"""HTTP collaborators of the poll cycle: claude.ai and the local relay."""

import requests

from usage_relay.logger import get_logger
from usage_relay.models import OrganizationCandidate, UsageSnapshot

log = get_logger("client")

USER_AGENT = "claude-usage-relay"


class UpstreamError(Exception):
    """A claude.ai request failed (network, HTTP status or body)."""


class RelayUnreachable(Exception):
    """The local relay did not accept a pushed snapshot."""


class ClaudeWebClient:
    """Lists organizations and fetches usage with a claude.ai session cookie."""

    def __init__(
        self,
        session_key: str | None,
        base_url: str = "https://claude.ai/api",
        timeout: float = 15,
        session: requests.Session | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session if session is not None else requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT, "Accept": "application/json"})
        if session_key:
            self._session.cookies.set("sessionKey", session_key)

    def _get_json(self, path: str):
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as exc:
            raise UpstreamError(f"GET {path}: {exc}") from exc
        if resp.status_code != 200:
            log.warning("upstream_error_response", path=path, status=resp.status_code, body=resp.text[:200])
            raise UpstreamError(f"GET {path}: HTTP {resp.status_code}")
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(f"GET {path}: invalid JSON") from exc

    def list_organizations(self) -> list[OrganizationCandidate]:
        data = self._get_json("/organizations")
        if not isinstance(data, list):
            raise UpstreamError("GET /organizations: expected a list")
        try:
            orgs = [OrganizationCandidate.from_api(o) for o in data if isinstance(o, dict)]
        except (TypeError, ValueError) as exc:
            raise UpstreamError(f"GET /organizations: malformed entry: {exc}") from exc
        log.debug(
            "organizations_listed",
            organizations=[
                {"uuid": o.uuid, "name": o.name, "billing_type": o.billing_type, "raven_type": o.raven_type}
                for o in orgs
            ],
        )
        return orgs

    def fetch_usage(self, organization_id: str):
        return self._get_json(f"/organizations/{organization_id}/usage")


class RelayClient:
    """Pushes snapshots to the relay server."""

    def __init__(self, url: str, timeout: float = 5, session: requests.Session | None = None):
        self._url = url
        self._timeout = timeout
        self._session = session if session is not None else requests.Session()

    def __call__(self, snapshot: UsageSnapshot):
        self.push(snapshot)

    def push(self, snapshot: UsageSnapshot):
        try:
            resp = self._session.post(self._url, json=snapshot.to_dict(), timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as exc:
            raise RelayUnreachable(f"{self._url}: {exc}") from exc
        log.debug("relay_push_ok", url=self._url)
