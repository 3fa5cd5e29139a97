"""Signed URL resolution service client.

Requests a short-lived signed URL for a CID from the pinning service:

    POST {base_url}/files/sign
    {"cid": ..., "expires": ..., "date": ..., "method": "GET"}

The service answers either with the URL as a bare JSON string or wrapped in
``{"data": url}`` / ``{"url": url}``.

SECURITY: the JWT stays server-side; only the signed URL reaches clients.
"""

import time

import httpx
import structlog

from coursegate.core.exceptions import OptimizedServiceUnavailableError
from coursegate.ledger.models import ContentKind


logger = structlog.get_logger(__name__)


class SignedUrlClient:
    """Client for the optimized (signed URL) resolution service."""

    def __init__(
        self,
        base_url: str,
        jwt: str,
        *,
        timeout: float = 15.0,
        expires_seconds: int = 7200,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._jwt = jwt
        self.timeout = timeout
        self.expires_seconds = expires_seconds
        self._transport = transport

    async def resolve_optimized(self, cid: str, kind: ContentKind) -> str:
        """Return a signed URL for ``cid``.

        Raises:
            OptimizedServiceUnavailableError: On any failure of the call.
        """
        payload = {
            "cid": cid,
            "expires": self.expires_seconds,
            "date": int(time.time()),
            "method": "GET",
        }
        headers = {
            "Authorization": f"Bearer {self._jwt}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self.base_url}/files/sign", json=payload, headers=headers
                )
        except httpx.TimeoutException as e:
            raise OptimizedServiceUnavailableError("Signing service timeout") from e
        except httpx.RequestError as e:
            raise OptimizedServiceUnavailableError(
                f"Signing service request error: {e}"
            ) from e

        if response.status_code in (httpx.codes.UNAUTHORIZED, httpx.codes.FORBIDDEN):
            raise OptimizedServiceUnavailableError(
                "Signing service rejected credentials or plan does not allow signed URLs"
            )
        if response.status_code != httpx.codes.OK:
            raise OptimizedServiceUnavailableError(
                f"Signing service error: {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as e:
            raise OptimizedServiceUnavailableError("Invalid signing response") from e

        if isinstance(body, dict):
            signed_url = body.get("data") or body.get("url")
        else:
            signed_url = body

        if not signed_url or not isinstance(signed_url, str):
            raise OptimizedServiceUnavailableError("Invalid signed URL response format")

        logger.debug(
            "signed_url_created",
            cid=cid,
            kind=kind.value,
            expires=self.expires_seconds,
        )
        return signed_url
