import json
from datetime import datetime

from bookmarket.extensions import db


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    # [{"book_id", "title", "price", "seller_id"}]
    items_json = db.Column(db.Text, nullable=False, default="[]")

    delivery_method = db.Column(db.String(16), nullable=False, default="home")  # home | locker
    delivery_price = db.Column(db.Float, nullable=False, default=0.0)
    total_amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="ZAR")
    payment_reference = db.Column(db.String(120), nullable=True, index=True)

    status = db.Column(db.String(48), nullable=False, default="pending_commit", index=True)
    delivery_status = db.Column(db.String(32), nullable=False, default="pending", index=True)
    status_reason = db.Column(db.String(400), nullable=True)

    # none | refunded | paid_out
    settlement = db.Column(db.String(16), nullable=False, default="none")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    expires_at = db.Column(db.DateTime, nullable=True, index=True)
    paid_at = db.Column(db.DateTime, nullable=True)
    committed_at = db.Column(db.DateTime, nullable=True)
    declined_at = db.Column(db.DateTime, nullable=True)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    expired_at = db.Column(db.DateTime, nullable=True)
    collected_at = db.Column(db.DateTime, nullable=True)
    delivered_at = db.Column(db.DateTime, nullable=True)
    reminder_sent_at = db.Column(db.DateTime, nullable=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    # Courier / locker
    locker_id = db.Column(db.String(64), nullable=True)
    tracking_number = db.Column(db.String(120), nullable=True, index=True)
    courier_reference = db.Column(db.String(120), nullable=True)
    qr_code_url = db.Column(db.String(1024), nullable=True)
    waybill_url = db.Column(db.String(1024), nullable=True)
    estimated_payment_date = db.Column(db.DateTime, nullable=True)
    pickup_slot = db.Column(db.String(64), nullable=True)

    # Missed pickup reschedule
    reschedule_fee = db.Column(db.Float, nullable=True)
    reschedule_payment_reference = db.Column(db.String(120), nullable=True)
    rescheduled_at = db.Column(db.DateTime, nullable=True)

    def items(self) -> list:
        raw = (self.items_json or "").strip()
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except Exception:
            return []
        return data if isinstance(data, list) else []

    def set_items(self, items: list) -> None:
        self.items_json = json.dumps(items or [], separators=(",", ":"))

    def items_subtotal(self) -> float:
        total = 0.0
        for item in self.items():
            try:
                total += float(item.get("price") or 0.0)
            except Exception:
                continue
        return round(total, 2)

    def book_titles(self) -> str:
        return ", ".join(str(i.get("title") or "").strip() for i in self.items() if i.get("title"))

    def to_dict(self) -> dict:
        def _iso(value):
            return value.isoformat() if value else None

        return {
            "id": int(self.id),
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "items": self.items(),
            "delivery_method": self.delivery_method or "home",
            "delivery_price": float(self.delivery_price or 0.0),
            "total_amount": float(self.total_amount or 0.0),
            "currency": self.currency or "ZAR",
            "payment_reference": self.payment_reference or "",
            "status": self.status,
            "delivery_status": self.delivery_status,
            "status_reason": self.status_reason or "",
            "settlement": self.settlement or "none",
            "created_at": _iso(self.created_at),
            "expires_at": _iso(self.expires_at),
            "paid_at": _iso(self.paid_at),
            "committed_at": _iso(self.committed_at),
            "declined_at": _iso(self.declined_at),
            "cancelled_at": _iso(self.cancelled_at),
            "expired_at": _iso(self.expired_at),
            "collected_at": _iso(self.collected_at),
            "delivered_at": _iso(self.delivered_at),
            "updated_at": _iso(self.updated_at),
            "locker_id": self.locker_id or "",
            "tracking_number": self.tracking_number or "",
            "courier_reference": self.courier_reference or "",
            "qr_code_url": self.qr_code_url or "",
            "waybill_url": self.waybill_url or "",
            "estimated_payment_date": _iso(self.estimated_payment_date),
            "pickup_slot": self.pickup_slot or "",
            "reschedule_fee": float(self.reschedule_fee) if self.reschedule_fee is not None else None,
            "rescheduled_at": _iso(self.rescheduled_at),
        }
