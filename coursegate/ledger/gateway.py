"""Ledger gateway client (Live mode).

Talks to the web gateway that fronts the license, progress and course
contracts. All endpoints answer with the envelope::

    {"success": true, "data": {...}}
    {"success": false, "error": "..."}

SECURITY: the gateway API key is sent as a bearer token and never logged in
clear.
"""

from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from coursegate.core.exceptions import TransportError

from .models import ContentKind, ContentUnit, License, ProgressRecord, Receipt


logger = structlog.get_logger(__name__)


class GatewayClient:
    """Shared HTTP plumbing for gateway-backed ledger and catalog."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the gateway client.

        Args:
            base_url: Gateway base URL, e.g. ``https://app.example.com``.
            timeout: Per-request timeout in seconds.
            api_key: Optional bearer token.
            transport: Optional httpx transport (tests use ``MockTransport``).
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._api_key = api_key
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any | None:
        """Send a request and unwrap the envelope.

        Returns:
            The ``data`` member, or None when the gateway answers 404.

        Raises:
            TransportError: On network failure, timeout, non-2xx status,
                malformed body or ``success == false``.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, path, params=params, json=json, headers=self._headers()
                )
        except httpx.TimeoutException as e:
            logger.error("ledger_gateway_timeout", path=path, error=str(e))
            raise TransportError("Ledger gateway timeout") from e
        except httpx.RequestError as e:
            logger.error("ledger_gateway_request_error", path=path, error=str(e))
            raise TransportError(f"Ledger gateway request error: {e}") from e

        if response.status_code == httpx.codes.NOT_FOUND:
            return None

        if not response.is_success:
            logger.error(
                "ledger_gateway_request_failed",
                path=path,
                status_code=response.status_code,
                response_text=response.text[:500],
            )
            raise TransportError(
                f"Ledger gateway error: {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise TransportError("Ledger gateway returned invalid JSON") from e

        if not isinstance(body, dict) or not body.get("success"):
            error = body.get("error") if isinstance(body, dict) else None
            raise TransportError(f"Ledger gateway rejected query: {error or 'unknown'}")

        return body.get("data")


def _parse_timestamp(value: Any) -> datetime:
    """Parse a unix-seconds timestamp (int or numeric string)."""
    return datetime.fromtimestamp(int(value), tz=UTC)


class GatewayLedgerClient(GatewayClient):
    """LedgerClient backed by the gateway's license/progress routes."""

    async def query_license(self, principal: str, course_id: int) -> License | None:
        data = await self._request(
            "GET",
            "/api/license/status",
            params={"courseId": str(course_id), "address": principal},
        )
        if not data:
            return None
        if not isinstance(data, dict):
            raise TransportError("Malformed license payload: data is not an object")
        if not data.get("hasLicense") or not data.get("license"):
            return None

        raw = data["license"]
        if not isinstance(raw, dict):
            raise TransportError("Malformed license payload: license is not an object")
        try:
            return License(
                principal=raw.get("student") or principal,
                course_id=int(raw.get("courseId", course_id)),
                valid_until=_parse_timestamp(raw["expiryTimestamp"]),
                active=bool(raw.get("isActive")),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Malformed license payload: {e}") from e

    async def query_progress(
        self, principal: str, course_id: int
    ) -> ProgressRecord | None:
        data = await self._request(
            "GET",
            "/api/progress/course",
            params={"courseId": str(course_id), "address": principal},
        )
        if not data:
            return None
        if not isinstance(data, dict):
            raise TransportError("Malformed progress payload: data is not an object")

        try:
            if "sectionsProgress" in data:
                bits = tuple(bool(done) for done in data["sectionsProgress"])
                total = int(data.get("totalSections", len(bits)))
            else:
                total = int(data["totalSections"])
                completed = [False] * total
                for section in data.get("sections", []):
                    index = int(section["sectionId"])
                    if 0 <= index < total:
                        completed[index] = bool(section.get("isCompleted"))
                bits = tuple(completed)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise TransportError(f"Malformed progress payload: {e}") from e

        return ProgressRecord(
            principal=principal,
            course_id=course_id,
            completed_units=bits,
            total_units=total,
        )

    async def write_completion(
        self, principal: str, course_id: int, unit_index: int
    ) -> Receipt:
        data = await self._request(
            "POST",
            "/api/progress/complete",
            json={
                "courseId": str(course_id),
                "sectionId": str(unit_index),
                "address": principal,
            },
        )
        if not isinstance(data, dict) or not data.get("transactionHash"):
            raise TransportError("Completion write returned no transaction hash")

        logger.info(
            "completion_written",
            course_id=course_id,
            unit_index=unit_index,
            transaction_hash=data["transactionHash"],
        )
        return Receipt(
            transaction_hash=data["transactionHash"],
            principal=principal,
            course_id=course_id,
            unit_index=unit_index,
        )


class GatewayCourseCatalog(GatewayClient):
    """CourseCatalog backed by the gateway's course sections route."""

    async def get_units(self, course_id: int) -> list[ContentUnit]:
        data = await self._request("GET", f"/api/course/{course_id}/sections")
        if not data:
            return []
        if not isinstance(data, list):
            raise TransportError("Malformed course sections payload: not a list")

        units = []
        try:
            for position, section in enumerate(data):
                if not isinstance(section, dict):
                    raise TypeError(f"section {position} is not an object")
                units.append(
                    ContentUnit(
                        course_id=course_id,
                        unit_index=int(section.get("orderId", position)),
                        content_identifier=section.get("contentCID", ""),
                        duration_seconds=int(section.get("duration", 0)),
                        kind=ContentKind(section.get("kind", ContentKind.VIDEO.value)),
                        title=section.get("title", f"Section {position + 1}"),
                    )
                )
        except (AttributeError, TypeError, ValueError) as e:
            raise TransportError(f"Malformed course sections payload: {e}") from e

        units.sort(key=lambda unit: unit.unit_index)
        # Positions are used as ledger section ids
        if [unit.unit_index for unit in units] != list(range(len(units))):
            raise TransportError(
                f"Malformed course sections payload: orderId of course {course_id}"
                " must run 0..n-1"
            )
        return units
