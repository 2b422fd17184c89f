"""
auth/service.py -- The Session/Auth Service.

AuthService is the only component that issues, verifies and revokes bearer
tokens. Every protected operation elsewhere on the platform calls verify()
first and trusts nothing else about the caller.

A token is accepted only if BOTH checks pass:
  1. The JWT itself: signature valid under SECRET_KEY, embedded exp not passed.
  2. The session row: a user_sessions row holds that exact token with
     expires_at in the future, and its owner is active.
A valid signature whose session was deleted (logout, password change) fails
check 2. A session row that outlives its token's exp fails check 1.

Multi-row writes (register, login, change_password, deactivation, deletion)
run inside one store transaction, so a failure mid-way leaves no partial state.

Errors are AuthError subclasses from auth/errors.py. Database errors are not
caught here; they propagate to the caller unchanged.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.engine import Connection
from sqlalchemy.exc import IntegrityError

from auth.errors import (
    AccountDeactivated,
    DuplicateEmail,
    InvalidCredentials,
    InvalidEmail,
    InvalidOrExpiredToken,
    InvalidVerificationToken,
    NoValidFields,
    ProtectedAccount,
    UserNotFound,
)
from auth.models import AuthResult, Session, SessionUser, User, UserPage, UserProfile
from auth.roles import Role
from auth.store import UserStore, to_iso
from auth.tokens import (
    check_password_or_dummy,
    create_access_token,
    create_email_verification_token,
    decode_access_token,
    decode_email_verification_token,
    hash_password,
    token_expiry,
    verify_password,
)

logger = logging.getLogger("coursehub.auth")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# The only columns update_profile() writes. Everything else in the payload,
# including role and is_active, is dropped without comment.
PROFILE_FIELDS: frozenset[str] = frozenset(
    {"name", "bio", "phone", "date_of_birth", "gender", "country", "profile_image"}
)

MAX_PAGE_SIZE = 100


def normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthService:
    """Account and session operations over a UserStore.

    Usage:
        service = AuthService(UserStore(settings.database_url))
        result = service.register("Alice", "alice@x.com", "Secret!1")
        me = service.verify(result.token)
        service.logout(result.token)
    """

    def __init__(self, store: UserStore) -> None:
        self.store = store

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        email: str,
        password: str,
        role: Role | str = Role.student,
        *,
        bio: str | None = None,
        phone: str | None = None,
        date_of_birth: str | None = None,
        gender: str | None = None,
        country: str | None = None,
        profile_image: str | None = None,
    ) -> AuthResult:
        """Create an account and log it in.

        The user row and its first session row are written in one
        transaction. Raises InvalidEmail, DuplicateEmail, or ValueError for a
        role outside the closed set.
        """
        user = self._new_user(
            name,
            email,
            password,
            role,
            bio=bio,
            phone=phone,
            date_of_birth=date_of_birth,
            gender=gender,
            country=country,
            profile_image=profile_image,
        )
        try:
            with self.store.transaction() as conn:
                user.id = self.store.create_user(user, conn=conn)
                token, expires_at = self._issue_session(user, conn)
                created = self.store.get_by_id(user.id, conn=conn)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration for the same email.
            raise DuplicateEmail() from exc

        logger.info("Registered user id=%s role=%s", user.id, user.role)
        return AuthResult(
            token=token,
            user=created.to_profile(),
            expires_at=expires_at,
            verification_token=created.email_verification_token,
        )

    def create_account(
        self,
        name: str,
        email: str,
        password: str,
        role: Role | str = Role.student,
        *,
        verified: bool = False,
        **profile: str | None,
    ) -> UserProfile:
        """Create an account without issuing a session (operator CLI path).

        verified=True marks the email as confirmed up front and issues no
        verification token.
        """
        user = self._new_user(name, email, password, role, verified=verified, **profile)
        try:
            user_id = self.store.create_user(user)
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        logger.info("Created user id=%s role=%s", user_id, user.role)
        return self.get_profile(user_id)

    def login(self, email: str, password: str) -> AuthResult:
        """Authenticate by email and password and open a new session.

        Unknown email and wrong password both raise InvalidCredentials with
        the same message; bcrypt runs in both cases so timing matches [C1].
        The password is checked before the active flag, so only a caller who
        knows the password learns that the account is deactivated.
        """
        return self._login(email, password, admin_only=False)

    def admin_login(self, email: str, password: str) -> AuthResult:
        """Like login(), but a non-admin account is treated as unknown."""
        return self._login(email, password, admin_only=True)

    def _login(self, email: str, password: str, admin_only: bool) -> AuthResult:
        user = self.store.get_by_email(normalize_email(email))
        if not check_password_or_dummy(password, user.hashed_password if user else None):
            logger.warning("Failed login attempt (admin_only=%s)", admin_only)
            raise InvalidCredentials()
        if admin_only and user.role != Role.admin.value:
            logger.warning("Non-admin user id=%s attempted admin login", user.id)
            raise InvalidCredentials()
        if not user.is_active:
            raise AccountDeactivated()

        with self.store.transaction() as conn:
            self.store.delete_expired_sessions(user_id=user.id, conn=conn)
            token, expires_at = self._issue_session(user, conn)
            self.store.update_last_login(user.id, conn=conn)
            fresh = self.store.get_by_id(user.id, conn=conn)

        logger.info("User id=%s logged in", user.id)
        return AuthResult(token=token, user=fresh.to_profile(), expires_at=expires_at)

    # ------------------------------------------------------------------
    # Token gate
    # ------------------------------------------------------------------

    def verify(self, token: str) -> SessionUser:
        """Resolve a bearer token to the identity it was issued for.

        Raises InvalidOrExpiredToken unless the token's signature and expiry
        are valid AND a live session row for it exists AND its owner is active.
        """
        payload = decode_access_token(token)
        if payload is None:
            raise InvalidOrExpiredToken()

        found = self.store.get_live_session(token)
        if found is None:
            raise InvalidOrExpiredToken()

        _session, owner = found
        if owner.id != payload["user_id"] or not owner.is_active:
            raise InvalidOrExpiredToken()

        return SessionUser(id=owner.id, name=owner.name, email=owner.email, role=owner.role)

    def logout(self, token: str) -> None:
        """Revoke one session. Unknown tokens are not an error."""
        if self.store.delete_session(token):
            logger.info("Session revoked")

    # ------------------------------------------------------------------
    # Account maintenance
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, old_password: str, new_password: str) -> None:
        """Replace the password and revoke every session the user holds.

        The session that authorized this call is revoked too; the caller must
        log in again with the new password.
        """
        user = self.store.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        if not verify_password(old_password, user.hashed_password):
            raise InvalidCredentials("Current password is incorrect.")

        new_hash = hash_password(new_password)
        with self.store.transaction() as conn:
            self.store.update_user(user_id, conn=conn, hashed_password=new_hash)
            revoked = self.store.delete_user_sessions(user_id, conn=conn)

        logger.info("Password changed for user id=%s (%d sessions revoked)", user_id, revoked)

    def update_profile(self, user_id: int, fields: Mapping[str, Any]) -> UserProfile:
        """Apply an allow-listed profile update and return the fresh profile."""
        updates = {key: value for key, value in fields.items() if key in PROFILE_FIELDS}
        if "name" in updates and not updates["name"]:
            # name is NOT NULL; an empty value means "leave it alone".
            del updates["name"]
        if not updates:
            raise NoValidFields()

        if not self.store.update_user(user_id, **updates):
            raise UserNotFound()
        return self.get_profile(user_id)

    def verify_email(self, token: str) -> UserProfile:
        """Confirm the address a verification token was issued for.

        Idempotent for an already-verified account. Raises
        InvalidVerificationToken for a bad, expired or superseded token and
        UserNotFound if the address no longer belongs to an account.
        """
        email = decode_email_verification_token(token)
        if email is None:
            raise InvalidVerificationToken()
        user = self.store.get_by_email(email)
        if user is None:
            raise UserNotFound()
        if user.email_verified:
            return user.to_profile()
        if not self.store.mark_email_verified(email, token):
            raise InvalidVerificationToken()
        logger.info("Email verified for user id=%s", user.id)
        return self.get_profile(user.id)

    def get_profile(self, user_id: int) -> UserProfile:
        user = self.store.get_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user.to_profile()

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_users(self, page: int = 1, limit: int = 20, search: str = "") -> UserPage:
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)
        users, total = self.store.list_users(offset=(page - 1) * limit, limit=limit, search=search.strip())
        return UserPage(users=[u.to_profile() for u in users], page=page, limit=limit, total=total)

    def admin_update_user(
        self,
        user_id: int,
        role: Role | str | None = None,
        is_active: bool | None = None,
    ) -> UserProfile:
        """Change a user's role and/or active flag.

        This is the only operation that changes a role. Deactivation also
        revokes every session the user holds.
        """
        updates: dict[str, Any] = {}
        if role is not None:
            updates["role"] = Role(role).value
        if is_active is not None:
            updates["is_active"] = is_active
        if not updates:
            raise NoValidFields()

        with self.store.transaction() as conn:
            if not self.store.update_user(user_id, conn=conn, **updates):
                raise UserNotFound()
            if is_active is False:
                self.store.delete_user_sessions(user_id, conn=conn)

        logger.info("Admin updated user id=%s fields=%s", user_id, sorted(updates))
        return self.get_profile(user_id)

    def delete_user(self, user_id: int) -> None:
        """Delete one non-admin account together with its sessions."""
        self.delete_users([user_id], missing_ok=False)

    def delete_users(self, user_ids: list[int], missing_ok: bool = True) -> int:
        """Delete non-admin accounts and their sessions in one transaction.

        If any id belongs to an admin, ProtectedAccount is raised and nothing
        is deleted. Unknown ids are skipped unless missing_ok is False, in
        which case UserNotFound is raised. Returns the number of accounts
        removed.
        """
        ids = sorted(set(user_ids))
        with self.store.transaction() as conn:
            roles = self.store.roles_by_id(ids, conn=conn)
            if not missing_ok and len(roles) < len(ids):
                raise UserNotFound()
            if Role.admin.value in roles.values():
                raise ProtectedAccount()
            removed = self.store.delete_users(list(roles), conn=conn) if roles else 0

        logger.info("Deleted %d user(s) ids=%s", removed, sorted(roles))
        return removed

    def export_users(self) -> list[UserProfile]:
        """Every account as a sanitized profile, newest first."""
        return [u.to_profile() for u in self.store.all_users()]

    def purge_expired_sessions(self) -> int:
        removed = self.store.delete_expired_sessions()
        logger.info("Purged %d expired sessions", removed)
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_user(
        self,
        name: str,
        email: str,
        password: str,
        role: Role | str,
        verified: bool = False,
        **profile: str | None,
    ) -> User:
        email = normalize_email(email)
        if not _EMAIL_RE.match(email):
            raise InvalidEmail()
        role = Role(role)
        if self.store.email_exists(email):
            raise DuplicateEmail()
        return User(
            name=name.strip(),
            email=email,
            role=role.value,
            hashed_password=hash_password(password),
            email_verified=verified,
            email_verification_token=None if verified else create_email_verification_token(email),
            **profile,
        )

    def _issue_session(self, user: User, conn: Connection) -> tuple[str, str]:
        """Mint a token for `user` and persist its session row on `conn`."""
        expires = token_expiry(datetime.now(timezone.utc))
        token = create_access_token(user.id, user.email, user.role, expires_at=expires)
        expires_at = to_iso(expires)
        self.store.create_session(Session(user_id=user.id, token=token, expires_at=expires_at), conn=conn)
        return token, expires_at
