from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


ROLES = ("user", "seller", "admin")
STATUSES = ("active", "inactive", "suspended", "pending")


class User(db.Model):
    """
    Principal: an account that can sign in, be impersonated, or own metrics.

    Never deleted. Admin actions move it between statuses; only "active"
    principals can authenticate or be impersonated.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("role IN ('user', 'seller', 'admin')", name="ck_users_role"),
        db.CheckConstraint(
            "status IN ('active', 'inactive', 'suspended', 'pending')",
            name="ck_users_status",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    phone_number = db.Column(db.String(32), nullable=True, unique=True)
    full_name = db.Column(db.String(255), nullable=False, default="")

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    role = db.Column(db.String(16), nullable=False, default="user", index=True)
    status = db.Column(db.String(16), nullable=False, default="pending", index=True)
    email_verified = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "phoneNumber": self.phone_number,
            "fullName": self.full_name,
            "role": self.role,
            "status": self.status,
            "isActive": self.is_active,
            "isEmailVerified": self.email_verified,
            "createdAt": to_utc_z(self.created_at),
            "lastLogin": to_utc_z(self.last_login_at) if self.last_login_at else None,
        }


class SessionRecord(db.Model):
    """
    Server-side mirror of an issued standard token.

    The plaintext token is never stored, only its SHA-256 hash. A standard
    token is honored only while its record is active and unexpired, so a
    session can be revoked long before the token's own expiry.
    Impersonation tokens never get a record.
    """
    __tablename__ = "session_records"
    __table_args__ = (
        db.Index("ix_session_records_principal_active", "principal_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    principal_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_activity = db.Column(db.DateTime(timezone=True), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(255), nullable=True)

    remember_me = db.Column(db.Boolean, nullable=False, default=False)
    user_agent = db.Column(db.String(512), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)

    principal = db.relationship("User", backref=db.backref("session_records", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "principal_id": self.principal_id,
            "created_at": to_utc_z(self.created_at),
            "expires_at": to_utc_z(self.expires_at),
            "last_activity": to_utc_z(self.last_activity),
            "is_active": self.is_active,
            "remember_me": self.remember_me,
        }
