import time

import jwt
import pytest

from storefront.app import create_app
from storefront.cart import Cart
from storefront.errors import DependencyError
from storefront.notifications import EmailSender
from storefront.orders import CustomerDetails

IDENTITY_SECRET = 'test-identity-secret'
ADMIN_SECRET = 'test-admin-key'


class RecordingEmailSender(EmailSender):
    """keeps every message; set `fail = True` to simulate a provider outage"""

    def __init__(self):
        self.sent = []
        self.fail = False

    def send(self, message):
        if self.fail:
            raise DependencyError('provider unavailable')
        self.sent.append(message)

    def subjects(self):
        return [m.subject for m in self.sent]


@pytest.fixture
def mailer():
    return RecordingEmailSender()


@pytest.fixture
def app(tmp_path, mailer):
    app = create_app(
        {
            'TESTING': True,
            'DATABASE_URL': f"sqlite:///{tmp_path / 'store.db'}",
            'IDENTITY_SECRET': IDENTITY_SECRET,
            'ADMIN_SECRET': ADMIN_SECRET,
            'PERMISSIVE_STATUS_CHANGES': False,
        },
        email_sender=mailer,
    )
    yield app
    app.extensions['storefront'].engine.dispose()


@pytest.fixture
def services(app):
    return app.extensions['storefront']


@pytest.fixture
def client(app):
    return app.test_client()


def make_token(uid='user-1', email='asha@example.com', expires_in=3600, secret=IDENTITY_SECRET):
    now = int(time.time())
    claims = {'sub': uid, 'exp': now + expires_in}
    # phone sign-ins carry no email claim at all
    if email is not None:
        claims.update({'email': email, 'iat': now})
    return jwt.encode(claims, secret, algorithm='HS256')


@pytest.fixture
def auth():
    def headers(uid='user-1', email='asha@example.com', **kwargs):
        return {'Authorization': f'Bearer {make_token(uid, email, **kwargs)}'}
    return headers


@pytest.fixture
def admin():
    return {'X-Admin-Key': ADMIN_SECRET}


@pytest.fixture
def customer():
    return CustomerDetails('Asha Kumari', '9876543210', 'Main Road\nBhagalpur, Bihar')


@pytest.fixture
def place_order(services, customer):
    """place an order through the checkout service for a known user"""
    def place(uid='user-1', email='asha@example.com', cart=None, coupon=None, payment='pay_ABC123'):
        if services.users.get(uid) is None:
            services.users.record_login(uid, email)
        cart = Cart.from_payload(cart or {'makhana-plain': {'unitPrice': 200, 'quantity': 2}})
        return services.checkout.place_order(uid, cart, customer, payment, coupon_code=coupon, email=email).order
    return place
