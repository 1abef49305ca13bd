from datetime import datetime

from bookmarket.extensions import db


class User(db.Model):
    """Marketplace profile row. Credentials live with the external auth provider."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(32), nullable=False, default="buyer")  # buyer | seller | admin

    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name or "",
            "email": self.email,
            "phone": self.phone or "",
            "role": self.role or "buyer",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
