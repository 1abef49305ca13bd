from __future__ import annotations

from dataclasses import dataclass, field

# Courier event codes onto the order's delivery sub-state.
COURIER_STATUS_MAP = {
    "COLLECTED": "picked_up",
    "IN_TRANSIT": "in_transit",
    "OUT_FOR_DELIVERY": "in_transit",
    "DELIVERED": "delivered",
    "DELIVERED_TO_RECIPIENT": "delivered",
    "COLLECTION_FAILED": "pickup_failed",
}


def map_courier_status(raw_status: str) -> str | None:
    key = (raw_status or "").strip().upper().replace(" ", "_").replace("-", "_")
    return COURIER_STATUS_MAP.get(key)


@dataclass
class Party:
    name: str
    phone: str = ""
    email: str = ""
    address: str = ""


@dataclass
class ShipmentResult:
    tracking_number: str
    shipment_id: str = ""
    qr_code_url: str = ""
    waybill_url: str = ""
    provider: str = ""
    raw: dict | None = None


@dataclass
class TrackingResult:
    tracking_number: str
    status: str
    delivery_status: str | None
    events: list = field(default_factory=list)
    raw: dict | None = None


class CourierProvider:
    name = "unknown"

    def create_locker_shipment(self, *, reference: str, locker_id: str, sender: Party, receiver: Party, weight_kg: float = 0.5, size: str = "S") -> ShipmentResult:
        raise NotImplementedError

    def track(self, tracking_number: str) -> TrackingResult:
        raise NotImplementedError
