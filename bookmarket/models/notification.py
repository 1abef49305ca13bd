import json
from datetime import datetime

from bookmarket.extensions import db


class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    kind = db.Column(db.String(48), nullable=False, default="general")  # order_committed | commit_reminder | ...
    title = db.Column(db.String(160), nullable=True)
    message = db.Column(db.Text, nullable=False)

    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=True, index=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    read_at = db.Column(db.DateTime, nullable=True)

    meta = db.Column(db.Text, nullable=True)  # JSON string

    def meta_dict(self):
        raw = (self.meta or "").strip()
        if not raw:
            return {}
        try:
            data = json.loads(raw)
            return data if isinstance(data, dict) else {}
        except Exception:
            return {}

    def mark_read(self, read_at: datetime | None = None) -> datetime:
        stamped = self.read_at or read_at or datetime.utcnow()
        self.read_at = stamped
        return stamped

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "kind": self.kind or "general",
            "title": self.title or "",
            "message": self.message or "",
            "order_id": int(self.order_id) if self.order_id is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "is_read": self.read_at is not None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "meta": self.meta_dict(),
        }
