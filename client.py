"""
Report view state for the reports pages.

``ReportClient`` fetches report payloads over HTTP. ``ReportView`` holds what
one report page shows and makes sure that only the most recently requested
payload is ever committed, whatever order the responses arrive in.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests

import config
from charts import chart_series, is_empty

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 15


@dataclass(frozen=True)
class Identity:
    id: int
    role: str
    username: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        return cls(id=int(data["id"]), role=str(data["role"]), username=str(data["username"]))

    @property
    def is_owner(self) -> bool:
        return self.role == "owner"


class FetchError(Exception):
    def __init__(self, kind: str, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status = status


def _error_message(r) -> Optional[str]:
    # proxies answer with plain text or bare JSON strings, not {"error": ...}
    try:
        body = r.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None


class ReportClient:
    def __init__(self, identity: Identity, base_url: Optional[str] = None,
                 http: Optional[requests.Session] = None, timeout: float = DEFAULT_TIMEOUT):
        self.identity = identity
        self.base_url = (base_url or config.REPORTS_API_URL).rstrip("/")
        self.http = http or requests.Session()
        self.timeout = timeout

    @classmethod
    def login(cls, username: str, password: str, base_url: Optional[str] = None,
              http: Optional[requests.Session] = None) -> "ReportClient":
        http = http or requests.Session()
        base = (base_url or config.REPORTS_API_URL).rstrip("/")
        try:
            r = http.post(f"{base}/api/login", json={"username": username, "password": password},
                          timeout=DEFAULT_TIMEOUT)
            r.raise_for_status()
            identity = Identity.from_dict(r.json())
        except (requests.RequestException, ValueError, KeyError) as e:
            raise FetchError("login", f"Login failed: {e}")
        return cls(identity, base_url=base, http=http)

    def fetch(self, kind: str, **params) -> Dict[str, Any]:
        params = {k: v for k, v in params.items() if v}
        try:
            r = self.http.get(
                f"{self.base_url}/api/reports/{kind}",
                params=params,
                headers={"X-Requested-By": self.identity.username},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise FetchError(kind, f"Failed to fetch report data: {e}")

        if not r.ok:
            raise FetchError(kind, _error_message(r) or "Failed to fetch report data", status=r.status_code)

        try:
            return r.json()
        except ValueError:
            raise FetchError(kind, "Report response was not valid JSON", status=r.status_code)


class ReportView:
    """
    What one report page displays.

    Every refresh takes a new token; results and errors carrying an older
    token are dropped.
    """

    def __init__(self, kind: str, client: ReportClient):
        self.kind = kind
        self.client = client
        self.data: Optional[Dict[str, Any]] = None
        self.error: Optional[str] = None
        self.stale = False
        self.loading = False
        self._tokens = itertools.count(1)
        self._latest = 0
        self._lock = threading.Lock()

    def _issue(self) -> int:
        with self._lock:
            self._latest = next(self._tokens)
            self.loading = True
            return self._latest

    def _is_current(self, token: int) -> bool:
        return token == self._latest

    def refresh(self, **params) -> bool:
        """Fetch and commit the report; False when the result was superseded."""
        token = self._issue()
        try:
            payload = self.client.fetch(self.kind, **params)
        except FetchError as e:
            return self._fail(token, e)
        return self._commit(token, payload)

    def _commit(self, token: int, payload: Dict[str, Any]) -> bool:
        with self._lock:
            if not self._is_current(token):
                logger.debug(f"Discarding stale {self.kind} report (request {token}, latest {self._latest})")
                return False
            self.data = payload
            self.error = None
            self.stale = False
            self.loading = False
            return True

    def _fail(self, token: int, error: FetchError) -> bool:
        with self._lock:
            if not self._is_current(token):
                logger.debug(f"Discarding stale {self.kind} error (request {token})")
                return False
            logger.error(f"Error fetching {self.kind} report: {error}")
            self.error = str(error)
            self.stale = self.data is not None
            self.loading = False
            return True

    def dismiss_error(self):
        self.error = None

    @property
    def empty(self) -> bool:
        return self.data is not None and is_empty(self.kind, self.data)

    @property
    def charts(self) -> Optional[Dict[str, Any]]:
        if self.data is None:
            return None
        return chart_series(self.kind, self.data)
