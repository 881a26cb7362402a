"""HTTP client for the sync server."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx

from td.errors import Forbidden, NotFound, SyncAPIError, Unauthorized
from td.sync.events import SyncEvent

logger = logging.getLogger(__name__)

TIMEOUT = 30.0
USER_AGENT = "td-sync/1"
SQLITE_HEADER = b"SQLite format 3\x00"


@dataclass
class PushResponse:
    accepted: int = 0
    acks: list[tuple[int, int]] = field(default_factory=list)
    rejected: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class PullResponse:
    events: list[SyncEvent] = field(default_factory=list)
    last_server_seq: int = 0
    has_more: bool = False


@dataclass
class Snapshot:
    data: bytes
    seq: int


class SyncClient:
    """Bearer-authenticated client for one sync server."""

    def __init__(self, base_url: str, api_key: str, device_id: str,
                 transport: Optional[httpx.BaseTransport] = None,
                 timeout: float = TIMEOUT) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.device_id = device_id
        self._client = httpx.Client(base_url=self.base_url, timeout=timeout,
                                    transport=transport,
                                    headers={"User-Agent": USER_AGENT})

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SyncClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    # --- HTTP helpers ---

    def _send(self, method: str, path: str, auth: bool = True, **kwargs: Any) -> httpx.Response:
        headers = kwargs.pop("headers", {})
        if auth and self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        try:
            resp = self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise SyncAPIError(0, f"{method} {path}: {e}") from e
        if resp.status_code >= 400:
            _raise_for_status(resp)
        return resp

    def _json(self, method: str, path: str, auth: bool = True, **kwargs: Any) -> Any:
        resp = self._send(method, path, auth=auth, **kwargs)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise SyncAPIError(resp.status_code, f"invalid JSON response: {e}") from e

    # --- Endpoints ---

    def health(self) -> dict[str, Any]:
        return self._json("GET", "/healthz", auth=False) or {}

    def list_projects(self) -> list[dict[str, Any]]:
        return self._json("GET", "/v1/projects") or []

    def create_project(self, name: str, description: str = "") -> dict[str, Any]:
        return self._json("POST", "/v1/projects",
                          json={"name": name, "description": description}) or {}

    def push(self, project_id: str, session_id: str, events: list[SyncEvent]) -> PushResponse:
        body = {
            "device_id": self.device_id,
            "session_id": session_id,
            "events": [e.to_wire() for e in events],
        }
        data = self._json("POST", f"/v1/projects/{project_id}/sync/push", json=body) or {}
        return PushResponse(
            accepted=int(data.get("accepted") or 0),
            acks=[(int(a["client_action_id"]), int(a["server_seq"]))
                  for a in data.get("acks") or []],
            rejected=list(data.get("rejected") or []),
        )

    def pull(self, project_id: str, after_server_seq: int, limit: int = 1000,
             exclude_client: str = "") -> PullResponse:
        params: dict[str, Any] = {"after_server_seq": after_server_seq, "limit": limit}
        if exclude_client:
            params["exclude_client"] = exclude_client
        data = self._json("GET", f"/v1/projects/{project_id}/sync/pull", params=params) or {}
        return PullResponse(
            events=[SyncEvent.from_wire(e) for e in data.get("events") or []],
            last_server_seq=int(data.get("last_server_seq") or 0),
            has_more=bool(data.get("has_more")),
        )

    def snapshot(self, project_id: str) -> Optional[Snapshot]:
        """Download the snapshot; None when the server has none."""
        try:
            resp = self._send("GET", f"/v1/projects/{project_id}/sync/snapshot")
        except NotFound:
            return None
        raw_seq = resp.headers.get("X-Snapshot-Seq", "")
        if not raw_seq:
            raise SyncAPIError(resp.status_code, "snapshot response missing X-Snapshot-Seq header")
        try:
            seq = int(raw_seq)
        except ValueError:
            raise SyncAPIError(resp.status_code, f"invalid X-Snapshot-Seq: {raw_seq!r}") from None
        if seq <= 0:
            raise SyncAPIError(resp.status_code, "snapshot seq must be positive")
        return Snapshot(resp.content, seq)

    def status(self, project_id: str) -> dict[str, Any]:
        return self._json("GET", f"/v1/projects/{project_id}/sync/status") or {}


def _raise_for_status(resp: httpx.Response) -> None:
    message = resp.text
    code = ""
    try:
        body = resp.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        err = body.get("error") if isinstance(body.get("error"), dict) else body
        code = str(err.get("code") or "")
        message = str(err.get("message") or code or message)
    if resp.status_code == 401:
        raise Unauthorized(message or "unauthorized")
    if resp.status_code == 403:
        raise Forbidden(message or "forbidden")
    if resp.status_code == 404:
        raise NotFound(message or "not found")
    raise SyncAPIError(resp.status_code, message, code)
