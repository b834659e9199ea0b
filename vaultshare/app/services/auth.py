"""
Credential & MFA state machine.

    ANONYMOUS --password ok--> PASSWORD_VERIFIED --TOTP ok--> AUTHENTICATED

The intermediate state exists only as a short-lived MFA-pending token;
nothing about it is kept server-side. Any failure sends the caller back
to ANONYMOUS with a generic message, so responses never reveal whether
an email is registered.

Failed password attempts are counted with a single UPDATE so concurrent
guesses cannot overwrite each other's increments.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.concurrency import run_in_threadpool

from vaultshare.app.core.config import settings
from vaultshare.app.core.context import ClientInfo, RequestContext
from vaultshare.app.core.exceptions import (
    AccountLocked,
    InvalidCredentials,
    InvalidMfaCode,
    InvalidSession,
    NotFound,
    ValidationFailed,
)
from vaultshare.app.core.timeutils import as_utc, utcnow
from vaultshare.app.models.enums import AuditAction, AuditStatus, Role, TargetType
from vaultshare.app.models.user import User
from vaultshare.app.security import access, hashing, kdf, key_exchange, tokens, totp
from vaultshare.app.services.audit import AuditActor, AuditService

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    ANONYMOUS = "anonymous"
    PASSWORD_VERIFIED = "password_verified"
    AUTHENTICATED = "authenticated"


@dataclass(frozen=True)
class MfaProvisioning:
    otpauth_uri: str
    qr_code: str
    secret: str


@dataclass(frozen=True)
class RegistrationResult:
    user: User
    provisioning: MfaProvisioning
    role_downgraded: bool


@dataclass(frozen=True)
class LoginResult:
    user: User
    mfa_token: str
    state: AuthState = AuthState.PASSWORD_VERIFIED


@dataclass(frozen=True)
class MfaResult:
    user: User
    access_token: str
    first_setup: bool
    state: AuthState = AuthState.AUTHENTICATED


def _credential_material(password: str):
    # CPU-heavy: bcrypt + RSA keygen, run off the event loop
    return hashing.get_password_hash(password), key_exchange.generate_key_pair()


class AuthService:
    def __init__(self, db: AsyncSession, audit: AuditService):
        self.db = db
        self.audit = audit

    # ─────────────────────────────────────────────────────────────
    # Lookups
    # ─────────────────────────────────────────────────────────────
    async def _get_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(
            select(User).where(User.email == email).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def _identity_taken(self, username: str, email: str) -> bool:
        result = await self.db.execute(
            select(User.id).where((User.username == username) | (User.email == email))
        )
        return result.first() is not None

    async def _admin_exists(self) -> bool:
        result = await self.db.execute(select(User.id).where(User.role == Role.ADMIN))
        return result.first() is not None

    async def get_profile(self, account_id: int) -> User:
        user = await self.db.get(User, account_id)
        if user is None:
            raise NotFound("User not found.")
        return user

    async def get_public_key(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if user is None or not user.public_key:
            raise NotFound("User or public key not found.")
        return user

    # ─────────────────────────────────────────────────────────────
    # Registration
    # ─────────────────────────────────────────────────────────────
    async def register(
        self,
        username: str,
        email: str,
        password: str,
        requested_role: Role = Role.GUEST,
        client: Optional[ClientInfo] = None,
    ) -> RegistrationResult:
        username = (username or "").strip()
        email = (email or "").strip().lower()
        if not username or not email or not password:
            raise ValidationFailed("Username, email and password are required.")
        if len(password) < settings.PASSWORD_MIN_LENGTH:
            raise ValidationFailed(
                f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long."
            )
        if await self._identity_taken(username, email):
            raise ValidationFailed("User with this email or username already exists.")

        mfa_secret = totp.generate_totp_secret()
        salt = kdf.generate_salt()
        hashed_password, key_pair = await run_in_threadpool(_credential_material, password)

        role = requested_role
        if role is Role.ADMIN and await self._admin_exists():
            role = Role.GUEST

        def build(assigned: Role) -> User:
            return User(
                username=username,
                email=email,
                hashed_password=hashed_password,
                role=assigned,
                mfa_secret=mfa_secret,
                mfa_enabled=True,
                mfa_verified=False,
                kdf_salt=salt.hex(),
                public_key=key_pair.public_pem,
                private_key=key_pair.private_pem,
                failed_login_attempts=0,
            )

        user = build(role)
        self.db.add(user)
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            if role is not Role.ADMIN or await self._identity_taken(username, email):
                raise ValidationFailed("User with this email or username already exists.") from None
            # Another admin registration won the race on the single-admin index
            role = Role.GUEST
            user = build(role)
            self.db.add(user)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                raise ValidationFailed("User with this email or username already exists.") from None

        await self.db.refresh(user)
        downgraded = requested_role is Role.ADMIN and role is not Role.ADMIN
        if downgraded:
            logger.info("Admin role requested by %s downgraded to guest", username)

        await self.audit.log(
            AuditAction.USER_CREATED,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_user(user),
            target=user.id,
            target_type=TargetType.USER,
            details={
                "role": role.value,
                "requested_role": requested_role.value,
                "role_downgraded": downgraded,
            },
            client=client,
        )

        provisioning = MfaProvisioning(
            otpauth_uri=totp.get_totp_uri(mfa_secret, email),
            qr_code=await run_in_threadpool(totp.generate_mfa_qr_code, mfa_secret, email),
            secret=mfa_secret,
        )
        return RegistrationResult(user=user, provisioning=provisioning, role_downgraded=downgraded)

    # ─────────────────────────────────────────────────────────────
    # Password step
    # ─────────────────────────────────────────────────────────────
    async def login(self, email: str, password: str, client: Optional[ClientInfo] = None) -> LoginResult:
        email = (email or "").strip().lower()
        if not email or not password:
            raise ValidationFailed("Email and password are required.")

        user = await self._get_by_email(email)
        if user is None:
            # same bcrypt cost as a real check
            await run_in_threadpool(hashing.dummy_verify, password)
            await self.audit.log(
                AuditAction.LOGIN_FAILED,
                AuditStatus.FAILED,
                target=email,
                target_type=TargetType.USER,
                details={"reason": "unknown_account"},
                client=client,
            )
            raise InvalidCredentials()

        now = utcnow()
        lock_until = as_utc(user.lock_until)
        if lock_until is not None and lock_until > now:
            # locked: refuse without consuming an attempt
            await self.audit.log(
                AuditAction.LOGIN_FAILED,
                AuditStatus.DENIED,
                actor=AuditActor.from_user(user),
                target=user.id,
                target_type=TargetType.USER,
                details={"reason": "account_locked"},
                client=client,
            )
            raise AccountLocked()

        if not await run_in_threadpool(hashing.verify_password, password, user.hashed_password):
            attempts = await self._record_failed_attempt(user.id, now, lock_expired=lock_until is not None)
            await self.audit.log(
                AuditAction.LOGIN_FAILED,
                AuditStatus.FAILED,
                actor=AuditActor.from_user(user),
                target=user.id,
                target_type=TargetType.USER,
                details={"reason": "invalid_password", "attempts": attempts},
                client=client,
            )
            if attempts >= settings.MAX_LOGIN_ATTEMPTS:
                await self.audit.log(
                    AuditAction.ACCOUNT_LOCKED,
                    AuditStatus.SUCCESS,
                    actor=AuditActor.system(),
                    target=user.id,
                    target_type=TargetType.USER,
                    details={
                        "attempts": attempts,
                        "lock_minutes": settings.LOCKOUT_DURATION_MINUTES,
                    },
                    client=client,
                )
            raise InvalidCredentials()

        await self.audit.log(
            AuditAction.LOGIN_SUCCESS,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_user(user),
            target=user.id,
            target_type=TargetType.USER,
            details={"stage": "password", "mfa_pending": True},
            client=client,
        )
        return LoginResult(user=user, mfa_token=tokens.create_mfa_token(user.id))

    async def _record_failed_attempt(self, user_id: int, now, lock_expired: bool) -> int:
        if lock_expired:
            # a previous lock ran out: this failure starts a new window
            values = {"failed_login_attempts": 1, "lock_until": None}
        else:
            values = {"failed_login_attempts": User.failed_login_attempts + 1}

        result = await self.db.execute(
            update(User)
            .where(User.id == user_id)
            .values(**values)
            .returning(User.failed_login_attempts)
            .execution_options(synchronize_session=False)
        )
        attempts = result.scalar_one()

        if attempts >= settings.MAX_LOGIN_ATTEMPTS:
            await self.db.execute(
                update(User)
                .where(User.id == user_id)
                .values(lock_until=now + timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES))
                .execution_options(synchronize_session=False)
            )
        await self.db.commit()
        return attempts

    # ─────────────────────────────────────────────────────────────
    # TOTP step
    # ─────────────────────────────────────────────────────────────
    async def verify_mfa(self, mfa_token: Optional[str], code: str, client: Optional[ClientInfo] = None) -> MfaResult:
        try:
            payload = tokens.decode_token(mfa_token, tokens.MFA_PENDING)
            user = await self.db.get(User, tokens.account_id_from(payload))
            if user is None:
                raise InvalidSession()
        except InvalidSession:
            await self.audit.log(
                AuditAction.MFA_FAILED,
                AuditStatus.FAILED,
                target_type=TargetType.USER,
                details={"reason": "invalid_session"},
                client=client,
            )
            raise InvalidSession("Invalid or expired MFA session. Please log in again.") from None

        await self.db.refresh(user)
        now = utcnow()
        lock_until = as_utc(user.lock_until)
        if lock_until is not None and lock_until > now:
            await self.audit.log(
                AuditAction.LOGIN_FAILED,
                AuditStatus.DENIED,
                actor=AuditActor.from_user(user),
                target=user.id,
                target_type=TargetType.USER,
                details={"reason": "account_locked", "stage": "mfa"},
                client=client,
            )
            raise AccountLocked()

        if not totp.verify_totp(user.mfa_secret, code or ""):
            await self.audit.log(
                AuditAction.MFA_FAILED,
                AuditStatus.FAILED,
                actor=AuditActor.from_user(user),
                target=user.id,
                target_type=TargetType.USER,
                details={"reason": "invalid_code"},
                client=client,
            )
            raise InvalidMfaCode()

        first_setup = not user.mfa_verified
        user.mfa_verified = True
        user.failed_login_attempts = 0
        user.lock_until = None
        user.last_login = now
        self.db.add(user)
        await self.db.commit()

        actor = AuditActor.from_user(user)
        if first_setup:
            await self.audit.log(
                AuditAction.MFA_SETUP, AuditStatus.SUCCESS,
                actor=actor, target=user.id, target_type=TargetType.USER, client=client,
            )
        await self.audit.log(
            AuditAction.MFA_VERIFIED, AuditStatus.SUCCESS,
            actor=actor, target=user.id, target_type=TargetType.USER, client=client,
        )
        await self.audit.log(
            AuditAction.LOGIN_SUCCESS, AuditStatus.SUCCESS,
            actor=actor, target=user.id, target_type=TargetType.USER, 
            details={"stage": "mfa", "mfa_pending": False}, client=client,
        )

        return MfaResult(
            user=user,
            access_token=tokens.create_access_token(user.id, user.role.value),
            first_setup=first_setup,
        )

    # ─────────────────────────────────────────────────────────────
    # Authenticated session
    # ─────────────────────────────────────────────────────────────
    async def authenticate(self, access_token: Optional[str], client: Optional[ClientInfo] = None) -> RequestContext:
        """Turn a full-access token into the request's identity."""
        payload = tokens.decode_token(access_token, tokens.ACCESS)
        user = await self.db.get(User, tokens.account_id_from(payload))
        if user is None:
            raise InvalidSession()
        # role comes from the store, not the token, so role changes apply at once
        return RequestContext(
            account_id=user.id,
            username=user.username,
            role=user.role,
            client=client or ClientInfo(),
            permissions=access.permissions_for(user.role),
        )

    async def logout(self, ctx: RequestContext) -> None:
        await self.audit.log(
            AuditAction.LOGOUT,
            AuditStatus.SUCCESS,
            actor=AuditActor.from_context(ctx),
            target=ctx.account_id,
            target_type=TargetType.USER,
            client=ctx.client,
        )
