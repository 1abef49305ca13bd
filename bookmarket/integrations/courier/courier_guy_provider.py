from __future__ import annotations

import requests

from bookmarket.integrations.courier.base import (
    CourierProvider,
    Party,
    ShipmentResult,
    TrackingResult,
    map_courier_status,
)

COURIER_GUY_BASE = "https://api.courierguy.co.za"
LOCKER_BASE = "https://api.pudo.co.za"


def _error_message(r) -> str:
    try:
        j = r.json() if r.content else {}
    except ValueError:
        j = {}
    if isinstance(j, dict):
        msg = str(j.get("message") or j.get("error") or "").strip()
        if msg:
            return msg
    return f"HTTP {r.status_code}"


class CourierGuyProvider(CourierProvider):
    name = "courier_guy"

    def __init__(self, *, api_key: str, base_url: str = "", locker_url: str = ""):
        self.api_key = api_key
        self.base_url = (base_url or COURIER_GUY_BASE).rstrip("/")
        self.locker_url = (locker_url or LOCKER_BASE).rstrip("/")

    def _headers(self) -> dict:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def create_locker_shipment(self, *, reference: str, locker_id: str, sender: Party, receiver: Party, weight_kg: float = 0.5, size: str = "S") -> ShipmentResult:
        payload = {
            "sender": {"name": sender.name, "phone": sender.phone, "email": sender.email},
            "receiver": {
                "name": receiver.name,
                "phone": receiver.phone,
                "email": receiver.email,
                "address": receiver.address,
            },
            "parcel": {"weight": weight_kg, "size": size},
            "serviceType": "LockerToDoor",
            "lockerId": locker_id,
            "reference": reference,
        }
        headers = {"Content-Type": "application/json", "ApiKey": self.api_key}
        r = requests.post(f"{self.locker_url}/shipment", headers=headers, json=payload, timeout=25)
        if r.status_code < 200 or r.status_code >= 300:
            raise RuntimeError(f"LOCKER_SHIPMENT_FAILED:{_error_message(r)}")
        j = r.json() if r.content else {}
        tracking = (j.get("trackingNumber") or "").strip()
        if not tracking:
            raise RuntimeError("LOCKER_SHIPMENT_FAILED:missing trackingNumber")
        return ShipmentResult(
            tracking_number=tracking,
            shipment_id=str(j.get("reference") or reference),
            qr_code_url=(j.get("qrCodeUrl") or "").strip(),
            waybill_url=(j.get("waybillUrl") or "").strip(),
            provider=self.name,
            raw=j,
        )

    def track(self, tracking_number: str) -> TrackingResult:
        tn = (tracking_number or "").strip()
        r = requests.get(f"{self.base_url}/api/v1/track/{tn}", headers=self._headers(), timeout=25)
        if r.status_code < 200 or r.status_code >= 300:
            raise RuntimeError(f"COURIER_TRACK_FAILED:{_error_message(r)}")
        j = r.json() if r.content else {}
        data = j.get("data") or j
        events = data.get("events") or data.get("tracking_events") or []
        status = str(data.get("status") or "").strip()
        if not status and events:
            status = str(events[-1].get("status") or "").strip()
        return TrackingResult(
            tracking_number=tn,
            status=status,
            delivery_status=map_courier_status(status),
            events=events,
            raw=j,
        )
