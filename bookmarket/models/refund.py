from datetime import datetime

from bookmarket.extensions import db


class Refund(db.Model):
    __tablename__ = "refunds"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_refunds_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="ZAR")
    transaction_reference = db.Column(db.String(120), nullable=False)

    provider = db.Column(db.String(32), nullable=False, default="paystack")
    provider_ref = db.Column(db.String(120), nullable=True)
    status = db.Column(db.String(24), nullable=False, default="pending")  # pending | processed | failed
    reason = db.Column(db.String(400), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "buyer_id": int(self.buyer_id),
            "amount": float(self.amount or 0.0),
            "currency": self.currency or "ZAR",
            "transaction_reference": self.transaction_reference or "",
            "provider": self.provider or "",
            "provider_ref": self.provider_ref or "",
            "status": self.status or "",
            "reason": self.reason or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
