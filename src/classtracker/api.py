"""HTTP client for the catalog and subscription endpoints.

Every call goes through ``ApiClient._request``, which maps transport errors to
``NETWORK_FAILURE`` and non-2xx responses to ``SERVER_REJECTED``. Read calls
additionally treat bodies that do not have the expected shape as an empty
result (logged as ``MALFORMED_RESPONSE``) rather than raising.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import httpx
import structlog
from pydantic import ValidationError

from classtracker.errors import ClassTrackerError, ErrorCode
from classtracker.models.catalog import CatalogEntry, CatalogPage, CatalogQuery, Term
from classtracker.models.subscriptions import (
    SubscribeRequest,
    SubscriptionRecord,
    UnsubscribeRequest,
)

if TYPE_CHECKING:
    from classtracker.config import ApiSettings
    from classtracker.identity import Identity

log = structlog.get_logger()

COURSES_PATH = "/api/courses"
SUBSCRIPTIONS_PATH = "/api/subscriptions"
SUBSCRIBE_PATH = "/api/subscribe"
UNSUBSCRIBE_PATH = "/api/unsubscribe"
REGISTER_PATH = "/api/register"


def build_http_client(settings: ApiSettings) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient for the backend API."""
    return httpx.AsyncClient(
        base_url=settings.base_url,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"Content-Type": "application/json", "Accept": "application/json"},
    )


def _malformed(endpoint: str, reason: str) -> None:
    log.warning(
        "malformed_response",
        code=ErrorCode.MALFORMED_RESPONSE.value,
        endpoint=endpoint,
        reason=reason,
    )


def parse_catalog_page(payload: Any) -> CatalogPage:
    """Build a CatalogPage from a ``/api/courses`` body.

    Missing or mistyped fields yield an empty page. A single hit that fails
    validation is skipped so that one bad row does not hide the whole page.
    """
    if not isinstance(payload, dict):
        _malformed(COURSES_PATH, "body is not an object")
        return CatalogPage.empty()

    courses = payload.get("courses")
    if not isinstance(courses, dict) or not isinstance(courses.get("hits"), list):
        _malformed(COURSES_PATH, "missing courses.hits")
        return CatalogPage.empty()

    entries: list[CatalogEntry] = []
    for hit in courses["hits"]:
        try:
            entries.append(CatalogEntry.model_validate(hit))
        except ValidationError:
            log.warning("catalog_hit_skipped", endpoint=COURSES_PATH, exc_info=True)

    found = courses.get("found")
    if not isinstance(found, int) or isinstance(found, bool):
        _malformed(COURSES_PATH, "missing courses.found")
        found = len(entries)

    term: Term | None = None
    if isinstance(payload.get("term"), dict):
        try:
            term = Term.model_validate(payload["term"])
        except ValidationError:
            log.warning("catalog_term_skipped", endpoint=COURSES_PATH, exc_info=True)

    return CatalogPage(entries=tuple(entries), found=found, term=term)


def parse_subscriptions(payload: Any) -> list[SubscriptionRecord]:
    """Build the record list from a ``/api/subscriptions`` body.

    The backend encodes an empty list as ``null``; that is an empty result,
    not a malformed one.
    """
    if not isinstance(payload, dict) or "subscriptions" not in payload:
        _malformed(SUBSCRIPTIONS_PATH, "missing subscriptions")
        return []

    rows = payload["subscriptions"]
    if rows is None:
        return []
    if not isinstance(rows, list):
        _malformed(SUBSCRIPTIONS_PATH, "subscriptions is not a list")
        return []

    records: list[SubscriptionRecord] = []
    for row in rows:
        try:
            records.append(SubscriptionRecord.model_validate(row))
        except ValidationError:
            log.warning("subscription_row_skipped", endpoint=SUBSCRIPTIONS_PATH, exc_info=True)
    return records


class ApiClient:
    """Thin async wrapper over the backend endpoints."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            log.warning("api_request_failed", method=method, path=path, error=str(exc))
            raise ClassTrackerError(
                ErrorCode.NETWORK_FAILURE,
                f"Request to {path} failed: {exc}",
                recoverable=True,
            ) from exc

        if not response.is_success:
            log.warning(
                "api_request_rejected",
                method=method,
                path=path,
                status_code=response.status_code,
            )
            raise ClassTrackerError(
                ErrorCode.SERVER_REJECTED,
                f"{method} {path} returned HTTP {response.status_code}",
                recoverable=response.status_code >= 500,
                status_code=response.status_code,
            )
        return response

    @staticmethod
    def _json_or_none(response: httpx.Response, path: str) -> Any:
        try:
            return response.json()
        except ValueError:
            _malformed(path, "body is not JSON")
            return None

    async def get_catalog_page(self, query: CatalogQuery) -> CatalogPage:
        response = await self._request("GET", COURSES_PATH, params=query.to_params())
        return parse_catalog_page(self._json_or_none(response, COURSES_PATH))

    async def list_subscriptions(self, user_key: str) -> list[SubscriptionRecord]:
        response = await self._request(
            "GET", SUBSCRIPTIONS_PATH, params={"userEmail": user_key}
        )
        return parse_subscriptions(self._json_or_none(response, SUBSCRIPTIONS_PATH))

    async def subscribe(self, request: SubscribeRequest) -> None:
        await self._request("POST", SUBSCRIBE_PATH, json=request.to_payload())

    async def unsubscribe(self, request: UnsubscribeRequest) -> None:
        await self._request("POST", UNSUBSCRIBE_PATH, json=request.to_payload())

    async def register_user(self, identity: Identity) -> None:
        """Record the signed-in user on the backend (upsert by email)."""
        user = {"email": identity.user_key, "name": identity.display_name}
        await self._request(
            "POST",
            REGISTER_PATH,
            json={"user": {k: v for k, v in user.items() if v is not None}},
        )
