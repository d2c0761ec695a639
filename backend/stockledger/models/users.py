from __future__ import annotations

from ..extensions import db
from stockledger.time_utils import to_utc_z


ROLE_ADMIN = "Admin"
ROLE_MANAGER = "Manager"
ROLE_SALES = "Sales"

ROLES = [ROLE_ADMIN, ROLE_MANAGER, ROLE_SALES]

# Default discount ceilings in basis points (None = unlimited)
DEFAULT_MAX_DISCOUNT_BPS = {
    ROLE_ADMIN: None,
    ROLE_MANAGER: 2500,
    ROLE_SALES: 1000,
}


class User(db.Model):
    """
    Acting user for attribution and discount ceilings.

    Authentication is handled outside this service; a User row only
    identifies who performed an action and how much discount they may grant.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_users_username"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    username = db.Column(db.String(64), nullable=False, unique=True)
    full_name = db.Column(db.String(255), nullable=True)
    role = db.Column(db.String(16), nullable=False, default=ROLE_SALES)

    # Per-user override of the role ceiling, in basis points (1000 = 10%)
    max_discount_bps = db.Column(db.Integer, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def discount_ceiling_bps(self) -> int | None:
        if self.max_discount_bps is not None:
            return self.max_discount_bps
        return DEFAULT_MAX_DISCOUNT_BPS.get(self.role)

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "full_name": self.full_name,
            "role": self.role,
            "max_discount_bps": self.max_discount_bps,
            "discount_ceiling_bps": self.discount_ceiling_bps,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
