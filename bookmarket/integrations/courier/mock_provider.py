from __future__ import annotations

import hashlib

from bookmarket.integrations.courier.base import CourierProvider, Party, ShipmentResult, TrackingResult


class MockCourierProvider(CourierProvider):
    name = "mock"

    def _tracking(self, reference: str) -> str:
        return "MCK" + hashlib.sha1(reference.encode("utf-8")).hexdigest()[:10].upper()

    def create_locker_shipment(self, *, reference: str, locker_id: str, sender: Party, receiver: Party, weight_kg: float = 0.5, size: str = "S") -> ShipmentResult:
        tn = self._tracking(reference)
        return ShipmentResult(
            tracking_number=tn,
            shipment_id=reference,
            qr_code_url=f"https://example.com/mock/qr/{tn}.png",
            waybill_url=f"https://example.com/mock/waybill/{tn}.pdf",
            provider=self.name,
            raw={"locker_id": locker_id},
        )

    def track(self, tracking_number: str) -> TrackingResult:
        return TrackingResult(tracking_number=tracking_number, status="IN_TRANSIT", delivery_status="in_transit", events=[], raw={})
