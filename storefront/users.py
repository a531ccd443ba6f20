"""
Customer accounts.

Identity (sign-up, passwords, phone verification) belongs to the external
identity provider. This module only keeps what the store needs: the uid and
email seen on login, the review block flag, and the self-service deletion
code flow. Deletion is soft: `deleted_at` is set, orders stay. Only an
admin can remove the row for good, and even then the orders stay.
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError

from storefront.config import DELETION_CODE_LENGTH
from storefront.db import transaction
from storefront.errors import ConflictError, ForbiddenError, UserNotFoundError, ValidationError
from storefront.models import AddressRow, ReviewRow, UserRow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class User:
    uid: str
    email: str
    phone: str | None
    created_at: datetime
    deleted_at: datetime | None
    blocked_from_reviewing: bool

    @property
    def is_deleted(self):
        return self.deleted_at is not None

    def to_dict(self):
        return {
            'uid': self.uid,
            'email': self.email,
            'phone': self.phone,
            'createdAt': self.created_at.isoformat(),
            'deletedAt': self.deleted_at.isoformat() if self.deleted_at else None,
            'blockedFromReviewing': self.blocked_from_reviewing,
        }


def _to_user(row):
    return User(
        uid=row.uid,
        email=row.email,
        phone=row.phone,
        created_at=row.created_at,
        deleted_at=row.deleted_at,
        blocked_from_reviewing=row.is_blocked_from_reviewing,
    )


def normalize_phone(phone):
    if not isinstance(phone, str):
        return ''
    return ''.join(phone.split())


def _aware(value):
    # sqlite hands timestamps back without tzinfo
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class UserRepository:

    def __init__(self, session_factory, deletion_code_ttl=timedelta(minutes=10)):
        self._sessions = session_factory
        self._code_ttl = deletion_code_ttl

    def _row(self, session, uid):
        row = session.execute(select(UserRow).where(UserRow.uid == uid)).scalar_one_or_none()
        if row is None:
            raise UserNotFoundError()
        return row

    def get(self, uid, session=None):
        with transaction(self._sessions, session) as s:
            row = s.execute(select(UserRow).where(UserRow.uid == uid)).scalar_one_or_none()
            return _to_user(row) if row else None

    def email_for(self, uid, session=None):
        if not uid:
            return None
        user = self.get(uid, session=session)
        return user.email if user else None

    def record_login(self, uid, email, phone=None):
        """create the user on first sight, refresh email/phone afterwards"""
        if not uid or not email:
            raise ValidationError('uid and email are required')
        try:
            with self._sessions.begin() as session:
                row = session.execute(select(UserRow).where(UserRow.uid == uid)).scalar_one_or_none()
                if row is None:
                    row = UserRow(uid=uid, email=email.strip().lower(), phone=normalize_phone(phone) or None)
                    session.add(row)
                else:
                    if row.deleted_at is not None:
                        raise ForbiddenError('This account has been deleted')
                    row.email = email.strip().lower()
                    if phone:
                        row.phone = normalize_phone(phone)
                session.flush()
                user = _to_user(row)
        except IntegrityError:
            raise ConflictError('Email or phone is already linked to another account')
        return user

    def require_active(self, uid):
        user = self.get(uid)
        if user is not None and user.is_deleted:
            raise ForbiddenError('This account has been deleted')
        return user

    def set_review_block(self, uid, blocked):
        with self._sessions.begin() as session:
            row = self._row(session, uid)
            row.is_blocked_from_reviewing = bool(blocked)
        logger.info('user %s review block set to %s', uid, bool(blocked))

    # ---------- DELETION ----------

    def issue_deletion_code(self, uid, now=None):
        now = now or datetime.now(timezone.utc)
        code = ''.join(secrets.choice('0123456789') for _ in range(DELETION_CODE_LENGTH))
        with self._sessions.begin() as session:
            row = self._row(session, uid)
            if row.deleted_at is not None:
                raise ForbiddenError('This account has been deleted')
            row.delete_code = code
            row.delete_code_expires_at = now + self._code_ttl
            email = row.email
        logger.info('deletion code issued for user %s', uid)
        return code, email

    def verify_deletion(self, uid, code, now=None):
        now = now or datetime.now(timezone.utc)
        with self._sessions.begin() as session:
            row = self._row(session, uid)
            expires_at = _aware(row.delete_code_expires_at)
            if not row.delete_code or expires_at is None or expires_at < now:
                raise ValidationError('Deletion code has expired, request a new one')
            if not secrets.compare_digest(row.delete_code, str(code).strip()):
                raise ValidationError('Deletion code is incorrect')
            row.delete_code = None
            row.delete_code_expires_at = None
            row.deleted_at = now
        logger.info('user %s soft-deleted by request', uid)

    def soft_delete(self, uid, now=None):
        with self._sessions.begin() as session:
            row = self._row(session, uid)
            if row.deleted_at is not None:
                raise ConflictError('User is already deleted')
            row.deleted_at = now or datetime.now(timezone.utc)
        logger.info('user %s soft-deleted by admin', uid)

    # ---------- ADMIN ----------

    def list_all(self):
        with self._sessions() as session:
            rows = session.execute(select(UserRow).order_by(UserRow.created_at.desc(), UserRow.id.desc())).scalars()
            return [_to_user(row) for row in rows]

    def phone_registered(self, phone):
        """whether an account already uses this phone number (sign-up check)"""
        phone = normalize_phone(phone)
        if not phone:
            raise ValidationError('Phone number is required')
        with self._sessions() as session:
            row = session.execute(select(UserRow.id).where(UserRow.phone == phone)).first()
            return row is not None

    def permanent_delete(self, uid):
        """remove the account with its addresses and reviews; orders are kept"""
        with self._sessions.begin() as session:
            row = self._row(session, uid)
            addresses = session.execute(delete(AddressRow).where(AddressRow.user_uid == uid)).rowcount
            reviews = session.execute(delete(ReviewRow).where(ReviewRow.user_uid == uid)).rowcount
            session.delete(row)
        logger.warning('user %s permanently deleted (%d addresses, %d reviews)', uid, addresses, reviews)
