from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class QuickbooksToken(db.Model):
    """
    Company-wide QuickBooks Online OAuth credential.

    INVARIANTS:
    - One live token set per company (realm_id unique).
    - The row is deleted when a refresh is rejected; reconnecting creates it again.

    SECURITY: raw token values never leave this table through to_status_dict().
    """
    __tablename__ = "quickbooks_tokens"
    __table_args__ = (
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    realm_id = db.Column(db.String(64), nullable=False, unique=True)

    access_token = db.Column(db.Text, nullable=False)
    refresh_token = db.Column(db.Text, nullable=False)
    token_type = db.Column(db.String(32), nullable=False, default="bearer")

    access_token_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    refresh_token_expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    connected_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_refreshed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    connected_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=db.func.now())

    def to_status_dict(self) -> dict:
        return {
            "companyId": self.realm_id,
            "connectedAt": to_utc_z(self.connected_at),
            "accessTokenExpiresAt": to_utc_z(self.access_token_expires_at),
            "refreshTokenExpiresAt": to_utc_z(self.refresh_token_expires_at),
            "lastRefreshedAt": to_utc_z(self.last_refreshed_at),
        }
