import threading
from typing import Any

import requests

from ..config import Config
from ..errors import NotFoundError, TransportError

# PostgREST error code for "single row requested, none (or many) found".
NO_ROWS_CODE = "PGRST116"

Filters = dict[str, Any]


def render_filters(filters: Filters | None) -> dict[str, str]:
    """Render ``{column: value}`` / ``{column: (op, value)}`` as query params.

    >>> render_filters({"project_id": "p1", "updated_at": ("gt", "2026")})
    {'project_id': 'eq.p1', 'updated_at': 'gt.2026'}
    """
    params: dict[str, str] = {}
    for column, value in (filters or {}).items():
        if isinstance(value, tuple):
            op, operand = value
            params[column] = f"{op}.{operand}"
        else:
            params[column] = f"eq.{value}"
    return params


class BackendClient:
    """Blocking client for a PostgREST-style table API.

    One ``requests.Session`` per thread, so calls may be issued from the
    worker threads ``run_sync_limited`` dispatches to.
    """

    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.rest_url = f"{config.backend_url.rstrip('/')}/rest/v1"

    @property
    def session(self) -> requests.Session:
        """The calling thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "apikey": self.config.api_key,
                "Authorization": f"Bearer {self.config.api_key}",
                "Content-Type": "application/json",
            }
        )
        session.verify = not self.config.insecure
        return session

    def _request(
        self,
        method: str,
        table: str,
        params: dict[str, str] | None = None,
        payload: Any = None,
        single: bool = False,
    ) -> Any:
        """
        Issue one request against ``/rest/v1/{table}``.
        """
        headers = {"Prefer": "return=representation"}
        if single:
            headers["Accept"] = "application/vnd.pgrst.object+json"

        try:
            response = self._get_session().request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                json=payload,
                headers=headers,
                timeout=(10, 60),
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {table} failed: {exc}") from exc

        if response.status_code >= 400:
            code = None
            message = response.text or response.reason
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                code = body.get("code")
                message = body.get("message") or message
            if code == NO_ROWS_CODE:
                raise NotFoundError(table, _describe(params))
            raise TransportError(
                f"{method} {table} failed ({response.status_code}): {message}",
                status_code=response.status_code,
            )

        if not response.content:
            return None
        return response.json()

    def select(
        self,
        table: str,
        filters: Filters | None = None,
        single: bool = False,
        order: str | None = None,
        columns: str = "*",
    ) -> Any:
        """
        Select rows.  With ``single=True`` exactly one row is expected and
        ``NotFoundError`` is raised when there is none.
        """
        params = {"select": columns, **render_filters(filters)}
        if order:
            params["order"] = order
        return self._request("GET", table, params=params, single=single)

    def insert(self, table: str, rows: list[dict[str, Any]]) -> list[dict]:
        """
        Insert rows and return them as stored.
        """
        return self._request("POST", table, payload=rows) or []

    def update(
        self, table: str, patch: dict[str, Any], filters: Filters
    ) -> list[dict]:
        """
        Update matching rows and return them as stored.
        """
        return (
            self._request(
                "PATCH", table, params=render_filters(filters), payload=patch
            )
            or []
        )

    def delete(self, table: str, filters: Filters) -> None:
        self._request("DELETE", table, params=render_filters(filters))

    def validate_connection(self) -> str:
        """
        Validate credentials with a one-row read of the mindmaps table.
        """
        self._request("GET", "mindmaps", params={"select": "id", "limit": "1"})
        return self.rest_url


def _describe(params: dict[str, str] | None) -> str:
    if not params:
        return "?"
    return ",".join(
        f"{k}={v}" for k, v in params.items() if k not in ("select", "order")
    )
