from datetime import datetime

from bookmarket.extensions import db


class BankingSubaccount(db.Model):
    __tablename__ = "banking_subaccounts"

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    business_name = db.Column(db.String(160), nullable=False, default="")
    bank_code = db.Column(db.String(16), nullable=False)
    bank_name = db.Column(db.String(120), nullable=True)
    account_number_masked = db.Column(db.String(32), nullable=False)

    subaccount_code = db.Column(db.String(64), nullable=True, index=True)
    recipient_code = db.Column(db.String(64), nullable=True)
    status = db.Column(db.String(24), nullable=False, default="active")

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "seller_id": int(self.seller_id),
            "business_name": self.business_name or "",
            "bank_code": self.bank_code or "",
            "bank_name": self.bank_name or "",
            "account_number": self.account_number_masked or "",
            "subaccount_code": self.subaccount_code or "",
            "has_recipient": bool(self.recipient_code),
            "status": self.status or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
