"""
Transactional email.

Notifications go through an outbox: the triggering write (order insert,
status change) adds a `notifications` row inside its own transaction, and
the row is delivered after that transaction commits. A failed send leaves the
row `failed` for `process_pending` to retry; it never undoes the order write.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum

import resend
from markupsafe import escape
from sqlalchemy import select, update

from storefront.errors import DependencyError, StoreError
from storefront.invoices import invoice_number, render_invoice
from storefront.models import NotificationRow

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    CONFIRMATION = 'confirmation'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'
    DELETION_CODE = 'deletion_code'


PENDING = 'pending'
SENDING = 'sending'
SENT = 'sent'
FAILED = 'failed'


# ============== SENDERS ==============

@dataclass(frozen=True)
class Attachment:
    filename: str
    content: bytes
    content_type: str = 'application/pdf'


@dataclass(frozen=True)
class EmailMessage:
    to: str
    subject: str
    html: str
    attachments: tuple = field(default_factory=tuple)


class EmailSender:
    """delivers one rendered message or raises DependencyError"""

    def send(self, message):
        raise NotImplementedError


class ResendEmailSender(EmailSender):

    def __init__(self, api_key, sender):
        self._api_key = api_key
        self._sender = sender

    def send(self, message):
        payload = {
            'from': self._sender,
            'to': [message.to],
            'subject': message.subject,
            'html': message.html,
        }
        if message.attachments:
            payload['attachments'] = [
                {'filename': a.filename, 'content': list(a.content)} for a in message.attachments
            ]
        resend.api_key = self._api_key
        try:
            response = resend.Emails.send(payload)
        except Exception as e:
            raise DependencyError('email provider rejected the message') from e
        return response.get('id') if isinstance(response, dict) else None


class LoggingEmailSender(EmailSender):
    """used when no email provider is configured (local dev)"""

    def send(self, message):
        logger.info(
            'email not sent (no provider configured): subject=%r attachments=%d',
            message.subject, len(message.attachments),
        )


# ============== TEMPLATES ==============

def _wrap(store, heading, body):
    return (
        '<div style="font-family: sans-serif; max-width: 600px; margin: auto; '
        'border: 1px solid #ddd; padding: 20px;">'
        f'<h1 style="color: #F97316; text-align: center;">{escape(heading)}</h1>'
        f'{body}'
        '<p style="font-size: 12px; color: #777; text-align: center;">For any questions, contact us at '
        f'<a href="mailto:{escape(store.contact_email)}">{escape(store.contact_email)}</a>.</p>'
        '</div>'
    )


def render_message(kind, order, recipient, store, extra=None):
    extra = extra or {}
    kind = NotificationKind(kind)

    if kind is NotificationKind.DELETION_CODE:
        code = extra.get('code')
        if not code:
            raise DependencyError('deletion code email without a code')
        body = (
            '<p>We received a request to delete your account.</p>'
            f'<p style="font-size: 24px; letter-spacing: 4px; text-align: center;"><strong>{escape(code)}</strong></p>'
            '<p>This code expires shortly. If you did not ask for this, ignore this email.</p>'
        )
        return EmailMessage(recipient, f'Your {store.name} account deletion code', _wrap(store, 'Account Deletion', body))

    if order is None:
        raise DependencyError(f'{kind.value} email without an order')

    greeting = f'<p>Hi {escape(order.customer_name)},</p>'
    order_line = f'<p><strong>Order ID:</strong> #{order.id}</p>'

    if kind is NotificationKind.CONFIRMATION:
        placed = order.created_at.strftime('%d %B %Y')
        body = (
            greeting
            + "<p>We've received your order and will process it shortly. Your invoice is attached to this email.</p>"
            + order_line
            + f'<p><strong>Order Date:</strong> {placed}</p>'
        )
        pdf = render_invoice(order, store)
        attachment = Attachment(f'invoice-{order.id}.pdf', pdf)
        return EmailMessage(
            recipient,
            f'Your {store.name} Order #{order.id} is Confirmed!',
            _wrap(store, 'Thank You For Your Order!', body),
            (attachment,),
        )

    if kind is NotificationKind.SHIPPED:
        body = greeting + '<p>Good news! Your order is on its way.</p>' + order_line
        return EmailMessage(recipient, f'Your {store.name} Order #{order.id} has Shipped!', _wrap(store, 'Your Order has Shipped', body))

    if kind is NotificationKind.DELIVERED:
        body = (
            greeting
            + '<p>Your order has been delivered. We hope you enjoy it!</p>'
            + order_line
            + '<p>You can now leave a review for the products in this order.</p>'
        )
        return EmailMessage(recipient, f'Your {store.name} Order #{order.id} has been Delivered', _wrap(store, 'Delivered!', body))

    # cancelled
    body = (
        greeting
        + '<p>Your order has been cancelled. If you paid online, the refund will reach you in 5-7 business days.</p>'
        + order_line
        + f'<p><strong>Invoice:</strong> {invoice_number(order)}</p>'
    )
    return EmailMessage(recipient, f'Your {store.name} Order #{order.id} has been Cancelled', _wrap(store, 'Order Cancelled', body))


# ============== DISPATCHER ==============

class NotificationDispatcher:

    def __init__(self, session_factory, sender, orders, store, max_attempts=3, claim_timeout=timedelta(minutes=15)):
        self._sessions = session_factory
        self._sender = sender
        self._orders = orders
        self._store = store
        self.max_attempts = max_attempts
        self.claim_timeout = claim_timeout

    def send(self, kind, order, recipient, extra=None):
        """send right away; returns False (and logs) instead of raising"""
        order_ref = order.id if order is not None else '-'
        try:
            self._sender.send(render_message(kind, order, recipient, self._store, extra))
        except Exception as e:
            logger.warning('%s email for order %s failed: %s', NotificationKind(kind).value, order_ref, _describe(e))
            return False
        logger.info('%s email sent for order %s', NotificationKind(kind).value, order_ref)
        return True

    def enqueue(self, session, kind, recipient, order_id=None, extra=None):
        """add an outbox row to the caller's transaction; returns its id"""
        row = NotificationRow(
            kind=NotificationKind(kind).value,
            order_id=order_id,
            recipient=recipient,
            extra=extra,
            status=PENDING,
            attempts=0,
        )
        session.add(row)
        session.flush()
        return row.id

    def deliver(self, notification_id):
        """
        deliver one outbox entry after its transaction committed.

        the entry is claimed with a compare-and-set so two workers never send
        the same email; returns True only when this call sent it.
        """
        with self._sessions.begin() as session:
            claimed = session.execute(
                update(NotificationRow)
                .where(
                    NotificationRow.id == notification_id,
                    NotificationRow.status.in_((PENDING, FAILED)),
                    NotificationRow.attempts < self.max_attempts,
                )
                .values(status=SENDING, attempts=NotificationRow.attempts + 1, claimed_at=datetime.now(timezone.utc))
            ).rowcount
            if not claimed:
                return False
            row = session.get(NotificationRow, notification_id)
            kind, recipient, order_id, extra = row.kind, row.recipient, row.order_id, row.extra

        error = None
        try:
            order = self._orders.get(order_id) if order_id is not None else None
            if order_id is not None and order is None:
                raise DependencyError(f'order {order_id} no longer exists')
            self._sender.send(render_message(kind, order, recipient, self._store, extra))
        except Exception as e:
            error = _describe(e)

        with self._sessions.begin() as session:
            row = session.get(NotificationRow, notification_id)
            if error is None:
                row.status = SENT
                row.sent_at = datetime.now(timezone.utc)
                row.last_error = None
            else:
                row.status = FAILED
                row.last_error = error[:1000]
            attempts = row.attempts

        if error is None:
            logger.info('notification %s (%s, order %s) sent', notification_id, kind, order_id)
            return True
        logger.warning(
            'notification %s (%s, order %s) failed, attempt %d/%d: %s',
            notification_id, kind, order_id, attempts, self.max_attempts, error,
        )
        return False

    def reclaim_stale(self, now=None):
        """
        release entries stuck in `sending` because a worker died mid-send.

        they become `failed`, so the usual retry rules (attempt ceiling
        included) apply to them again.
        """
        cutoff = (now or datetime.now(timezone.utc)) - self.claim_timeout
        with self._sessions.begin() as session:
            released = session.execute(
                update(NotificationRow)
                .where(NotificationRow.status == SENDING, NotificationRow.claimed_at < cutoff)
                .values(status=FAILED, last_error='delivery interrupted')
            ).rowcount
        if released:
            logger.warning('outbox: released %d stale notifications', released)
        return released

    def process_pending(self, limit=50):
        """retry unsent entries; returns how many went out"""
        self.reclaim_stale()
        with self._sessions() as session:
            ids = session.execute(
                select(NotificationRow.id)
                .where(
                    NotificationRow.status.in_((PENDING, FAILED)),
                    NotificationRow.attempts < self.max_attempts,
                )
                .order_by(NotificationRow.id)
                .limit(limit)
            ).scalars().all()
        sent = sum(1 for notification_id in ids if self.deliver(notification_id))
        if ids:
            logger.info('outbox run: %d of %d notifications sent', sent, len(ids))
        return sent

    def list_for_order(self, order_id, kind=None):
        with self._sessions() as session:
            query = select(NotificationRow).where(NotificationRow.order_id == order_id)
            if kind is not None:
                query = query.where(NotificationRow.kind == NotificationKind(kind).value)
            return [
                {
                    'id': row.id,
                    'kind': row.kind,
                    'status': row.status,
                    'attempts': row.attempts,
                    'createdAt': row.created_at.isoformat(),
                    'sentAt': row.sent_at.isoformat() if row.sent_at else None,
                }
                for row in session.execute(query.order_by(NotificationRow.id)).scalars()
            ]


def _describe(error):
    # store errors carry a safe message; anything else just by type
    if isinstance(error, StoreError):
        cause = error.__cause__
        return f'{error.message} ({type(cause).__name__})' if cause else error.message
    return type(error).__name__
