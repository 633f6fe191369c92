"""Async HTTP client for the PocketBase record API.

This module provides:
- PocketBaseClient: async client for listing, creating, updating and
  deleting collection records, plus user authentication
- Filter helpers that escape user-controlled values before they are
  interpolated into a PocketBase filter expression
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

import httpx

from lexisync.core.config import ServerConfig

logger = logging.getLogger(__name__)

AuthListener = Callable[[str | None], None]

DEFAULT_PAGE_SIZE = 500


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(APIError):
    """Authentication failed or the token lacks access."""


class NotFoundError(APIError):
    """Resource not found."""


class ValidationError(APIError):
    """The server rejected the record data."""


class NetworkError(APIError):
    """The request never produced an HTTP response (status 0)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=0)


def sanitize_filter_value(value: str) -> str:
    """Escape a value for use inside a double-quoted filter literal.

    Backslashes are doubled first, then double quotes are escaped, so a
    value can never terminate the literal it is embedded in.

    Args:
        value: Raw, possibly user-controlled value.

    Returns:
        Escaped value, without surrounding quotes.
    """
    return value.replace("\\", "\\\\").replace('"', '\\"')


def build_filter(**fields: str) -> str:
    """Build an equality filter joined with ``&&``.

    Example:
        >>> build_filter(user="abc", word='say "hi"')
        'user = "abc" && word = "say \\\\"hi\\\\""'
    """
    return " && ".join(
        f'{name} = "{sanitize_filter_value(str(value))}"'
        for name, value in fields.items()
    )


class PocketBaseClient:
    """Async HTTP client for a PocketBase server.

    Usage:
        async with PocketBaseClient(ServerConfig("https://pb.example.com")) as pb:
            await pb.auth_with_password("me@example.com", "secret")
            records = await pb.list_records("vocabulary", filter=build_filter(user=pb.user_id))
    """

    def __init__(
        self,
        config: ServerConfig,
        page_size: int = DEFAULT_PAGE_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            config: Server configuration (URL, token, timeout).
            page_size: Records per page when listing.
            transport: Optional custom transport (used by tests).
        """
        self._config = config
        self._page_size = page_size
        self._token = config.token
        self._user_id = config.user_id if config.token else None
        self._auth_listeners: list[AuthListener] = []
        self._client = httpx.AsyncClient(
            base_url=config.server_url,
            timeout=config.timeout,
            verify=config.verify_ssl,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> PocketBaseClient:
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: object) -> None:
        """Async context manager exit."""
        await self.close()

    # === Auth state ===

    @property
    def user_id(self) -> str | None:
        """Id of the authenticated user, or None when logged out."""
        return self._user_id

    @property
    def token(self) -> str:
        """Current auth token (empty when logged out)."""
        return self._token

    @property
    def is_authenticated(self) -> bool:
        """Check whether a user identity is available."""
        return bool(self._token and self._user_id)

    def add_auth_listener(self, callback: AuthListener) -> None:
        """Register a callback invoked with the new user id on auth changes.

        The callback receives None when the client is logged out.
        """
        self._auth_listeners.append(callback)

    def set_auth(self, token: str, user_id: str) -> None:
        """Install an auth token, notifying listeners if the user changed."""
        changed = user_id != self._user_id
        self._token = token
        self._user_id = user_id
        if changed:
            self._notify_auth(user_id)

    def clear_auth(self) -> None:
        """Forget the current token and user."""
        had_user = self._user_id is not None
        self._token = ""
        self._user_id = None
        if had_user:
            self._notify_auth(None)

    def _notify_auth(self, user_id: str | None) -> None:
        for callback in list(self._auth_listeners):
            try:
                callback(user_id)
            except Exception as e:
                logger.warning("Auth listener failed: %s", e)

    def _headers(self) -> dict[str, str]:
        if self._token:
            return {"Authorization": self._token}
        return {}

    # === Request plumbing ===

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, mapping transport failures to NetworkError."""
        try:
            response = await self._client.request(
                method, url, headers=self._headers(), **kwargs
            )
        except httpx.TransportError as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e
        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> httpx.Response:
        """Handle API response and raise appropriate exceptions."""
        if response.status_code < 400:
            return response

        detail = _error_message(response)
        if response.status_code in (401, 403):
            raise AuthenticationError(detail, response.status_code)
        if response.status_code == 404:
            raise NotFoundError(detail, 404)
        if response.status_code == 400:
            raise ValidationError(detail, 400)
        raise APIError(detail, response.status_code)

    @staticmethod
    def _records_url(collection: str) -> str:
        return f"/api/collections/{collection}/records"

    # === Health check ===

    async def health_check(self) -> bool:
        """Check if the server is healthy.

        Returns:
            True if server is healthy.
        """
        try:
            response = await self._client.get("/api/health")
            return response.status_code == 200
        except httpx.RequestError:
            return False

    # === Authentication ===

    async def auth_with_password(
        self,
        identity: str,
        password: str,
        collection: str = "users",
    ) -> dict[str, Any]:
        """Log in with identity (email/username) and password.

        Returns:
            The authenticated user record.

        Raises:
            AuthenticationError: If the credentials are rejected.
        """
        try:
            response = await self._request(
                "POST",
                f"/api/collections/{collection}/auth-with-password",
                json={"identity": identity, "password": password},
            )
        except ValidationError as e:
            # PocketBase answers bad credentials with 400
            raise AuthenticationError(str(e), e.status_code) from e
        data = response.json()
        record: dict[str, Any] = data["record"]
        self.set_auth(data["token"], record["id"])
        logger.info("Authenticated as %s", record["id"])
        return record

    async def auth_refresh(self, collection: str = "users") -> bool:
        """Refresh the current auth token.

        Returns:
            True if the token was refreshed, False if it was rejected
            (the client is logged out in that case).
        """
        if not self._token:
            return False
        try:
            response = await self._request(
                "POST", f"/api/collections/{collection}/auth-refresh"
            )
        except AuthenticationError:
            logger.info("Auth token rejected, logging out")
            self.clear_auth()
            return False
        data = response.json()
        self.set_auth(data["token"], data["record"]["id"])
        return True

    # === Record operations ===

    async def list_records(
        self,
        collection: str,
        filter: str | None = None,
        sort: str | None = None,
    ) -> list[dict[str, Any]]:
        """List every record of a collection matching a filter.

        Pages through the collection until the last page is reached.

        Args:
            collection: Collection name.
            filter: PocketBase filter expression (values must be sanitized).
            sort: Sort expression, e.g. "-updated".

        Returns:
            All matching records.
        """
        records: list[dict[str, Any]] = []
        page = 1
        while True:
            params: dict[str, str | int] = {"page": page, "perPage": self._page_size}
            if filter:
                params["filter"] = filter
            if sort:
                params["sort"] = sort
            response = await self._request(
                "GET", self._records_url(collection), params=params
            )
            data = response.json()
            items = data.get("items", [])
            records.extend(items)

            total_pages = data.get("totalPages")
            if total_pages is None or total_pages < 0:
                if len(items) < self._page_size:
                    break
            elif page >= total_pages:
                break
            page += 1
        return records

    async def create_record(
        self, collection: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Create a record. An "id" key in data sets the primary key."""
        response = await self._request(
            "POST", self._records_url(collection), json=data
        )
        result: dict[str, Any] = response.json()
        return result

    async def update_record(
        self, collection: str, record_id: str, data: dict[str, Any]
    ) -> dict[str, Any]:
        """Update a record by primary key."""
        response = await self._request(
            "PATCH", f"{self._records_url(collection)}/{record_id}", json=data
        )
        result: dict[str, Any] = response.json()
        return result

    async def delete_record(self, collection: str, record_id: str) -> None:
        """Delete a record by primary key."""
        await self._request(
            "DELETE", f"{self._records_url(collection)}/{record_id}"
        )


def _error_message(response: httpx.Response) -> str:
    """Extract the error message from a PocketBase error response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message", "Unknown error"))
    return "Unknown error"
