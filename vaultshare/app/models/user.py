from sqlalchemy import Column, Integer, String, Boolean, DateTime, Text, Index, text
from sqlalchemy.sql import func

from vaultshare.app.db.base import Base
from vaultshare.app.models.enums import Role, enum_column


class User(Base):
    __tablename__ = "users"
    __table_args__ = (
        # At most one admin. Enforced by the store so concurrent
        # registrations cannot both pass an application-level check.
        Index(
            "uq_users_single_admin",
            "role",
            unique=True,
            sqlite_where=text("role = 'admin'"),
            postgresql_where=text("role = 'admin'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(30), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)

    # bcrypt hash; login only, never used for file keys
    hashed_password = Column(String(255), nullable=False)

    role = Column(enum_column(Role, length=16), nullable=False, default=Role.GUEST)

    # TOTP: secret is written once at registration
    mfa_secret = Column(String(64), nullable=False)
    mfa_enabled = Column(Boolean, nullable=False, default=True)
    mfa_verified = Column(Boolean, nullable=False, default=False)

    # hex-encoded 32-byte PBKDF2 salt; fallback for files without their own
    kdf_salt = Column(String(64), nullable=True)

    # RSA-2048 PEM pair for key exchange
    public_key = Column(Text, nullable=True)
    private_key = Column(Text, nullable=True)

    failed_login_attempts = Column(Integer, nullable=False, default=0)
    lock_until = Column(DateTime(timezone=True), nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now()
    )
