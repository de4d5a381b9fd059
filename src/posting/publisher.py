from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from inventory.data_models import PublishResult, VehicleRecord

logger = logging.getLogger(__name__)


class ListingPublisher(Protocol):
    async def publish(self, vehicle: VehicleRecord) -> PublishResult: ...


def build_listing_payload(vehicle: VehicleRecord) -> dict[str, Any]:
    return {
        "vehicle_id": vehicle.id,
        "title": vehicle.title,
        "year": vehicle.year,
        "make": vehicle.make,
        "model": vehicle.model,
        "trim": vehicle.trim or "",
        "vin": vehicle.vin or "",
        "price": int(vehicle.price) if vehicle.price.isdigit() else 0,
        "mileage": int(vehicle.mileage) if vehicle.mileage and vehicle.mileage.isdigit() else None,
        "body": vehicle.body,
        "color": vehicle.color,
        "vehicle_class": vehicle.vehicle_class,
        "photos": list(vehicle.photos),
        "description": vehicle.description or "",
    }


class HttpListingPublisher:
    """Client for the browser-automation sidecar that creates marketplace listings.

    POST {base_url}/listings with the listing payload; the sidecar answers
    ``{"success": true, "listing_url": ...}`` or ``{"success": false, "error": ...}``.
    A single call can take minutes while photos upload.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float = 600.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def publish(self, vehicle: VehicleRecord) -> PublishResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(
                    f"{self.base_url}/listings",
                    json=build_listing_payload(vehicle),
                    headers=self._headers(),
                )
                resp.raise_for_status()
            data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Publish request failed for %s: %s", vehicle.id, exc)
            return PublishResult(success=False, error=str(exc) or exc.__class__.__name__)

        if data.get("success"):
            return PublishResult(success=True, listing_url=data.get("listing_url") or data.get("listingUrl"))
        return PublishResult(success=False, error=str(data.get("error") or "publisher reported failure"))
