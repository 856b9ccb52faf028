"""
ardor.services.issuance — Badge & Artifact Issuance Clients
============================================================

Thin async HTTP clients for the two external issuance services.  Both
return the service's reference id on success and raise an
:class:`~ardor.errors.IssuanceError` subclass otherwise:

* ``409 Conflict`` from the badge service → :class:`DuplicateMintError`
* any httpx timeout → :class:`IssuanceTimeoutError`
* any other transport error or non-2xx status → :class:`IssuanceError`

Neither client retries; re-issuance is an operator decision.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

import httpx

from ardor.errors import DuplicateMintError, IssuanceError, IssuanceTimeoutError

logger = logging.getLogger(__name__)


class BadgeIssuer(Protocol):
    async def mint_badge(self, user_id: str, rank_level: int) -> str: ...


class ArtifactIssuer(Protocol):
    async def distribute_artifact(self, user_id: str, artifact_id: str) -> str: ...


def _api_headers() -> dict[str, str]:
    key = os.getenv("ISSUANCE_API_KEY", "").strip()
    return {"X-API-Key": key} if key else {}


class _HttpIssuer:
    """Shared request/response handling for the issuance services."""

    service_name = "issuance"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def _post(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout,
                transport=self._transport,
                headers=_api_headers(),
            ) as client:
                resp = await client.post(url, json=body)
        except httpx.TimeoutException as exc:
            raise IssuanceTimeoutError(
                f"{self.service_name} timed out after {self._timeout}s"
            ) from exc
        except httpx.HTTPError as exc:
            raise IssuanceError(f"{self.service_name} request failed: {exc}") from exc

        if resp.status_code == 409:
            raise DuplicateMintError(f"{self.service_name} reported a duplicate: {resp.text}")
        if resp.status_code >= 400:
            raise IssuanceError(
                f"{self.service_name} returned HTTP {resp.status_code}: {resp.text[:200]}"
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise IssuanceError(f"{self.service_name} returned a non-JSON body") from exc

    def _reference(self, data: dict[str, Any]) -> str:
        ref = data.get("reference_id") or data.get("tx_hash")
        if not ref:
            raise IssuanceError(f"{self.service_name} response has no reference id")
        return str(ref)


class HttpBadgeIssuer(_HttpIssuer):
    service_name = "badge service"

    async def mint_badge(self, user_id: str, rank_level: int) -> str:
        data = await self._post("/badges", {"user_id": user_id, "rank_level": rank_level})
        ref = self._reference(data)
        logger.info("Minted rank %d badge for %s (ref=%s)", rank_level, user_id, ref)
        return ref


class HttpArtifactIssuer(_HttpIssuer):
    service_name = "artifact service"

    async def distribute_artifact(self, user_id: str, artifact_id: str) -> str:
        data = await self._post(
            "/artifacts/distribute", {"user_id": user_id, "artifact_id": artifact_id},
        )
        ref = self._reference(data)
        logger.info("Distributed artifact %s to %s (ref=%s)", artifact_id, user_id, ref)
        return ref
