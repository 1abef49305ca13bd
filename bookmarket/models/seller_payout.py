from datetime import datetime

from bookmarket.extensions import db


class SellerPayout(db.Model):
    __tablename__ = "seller_payouts"
    __table_args__ = (
        db.UniqueConstraint("order_id", name="uq_seller_payouts_order"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, unique=True, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    gross_amount = db.Column(db.Float, nullable=False, default=0.0)
    platform_fee = db.Column(db.Float, nullable=False, default=0.0)
    net_amount = db.Column(db.Float, nullable=False, default=0.0)
    currency = db.Column(db.String(8), nullable=False, default="ZAR")

    transfer_reference = db.Column(db.String(120), nullable=False, unique=True)
    transfer_code = db.Column(db.String(120), nullable=True)
    status = db.Column(db.String(24), nullable=False, default="pending")  # pending | success | failed
    triggered_by = db.Column(db.String(32), nullable=False, default="system")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "seller_id": int(self.seller_id),
            "gross_amount": float(self.gross_amount or 0.0),
            "platform_fee": float(self.platform_fee or 0.0),
            "net_amount": float(self.net_amount or 0.0),
            "currency": self.currency or "ZAR",
            "transfer_reference": self.transfer_reference or "",
            "transfer_code": self.transfer_code or "",
            "status": self.status or "",
            "triggered_by": self.triggered_by or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
