import os
from decimal import Decimal

from dotenv import load_dotenv

load_dotenv()

# ============== BUSINESS RULES ==============
# amounts are in rupees

FREE_SHIPPING_THRESHOLD = Decimal('500')
FLAT_SHIPPING_FEE = Decimal('99')
SUBSCRIPTION_MARKER = 'subscription'  # a lone line item with this in its id ships free
MONEY_QUANTUM = Decimal('0.01')
# largest amount a NUMERIC(10, 2) column holds
MAX_AMOUNT = Decimal('99999999.99')
MAX_QUANTITY = 10000
REVIEW_MAX_LENGTH = 1000
DELETION_CODE_LENGTH = 6
COD_PREFIX = 'cod_'


def _flag(name, default='0'):
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def _int(name, default):
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return int(default)


# ============== CONFIGURATION ==============

class Config:
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///storefront.db')
    SQL_ECHO = _flag('SQL_ECHO')

    # empty secret disables the admin api entirely
    ADMIN_SECRET = os.getenv('ADMIN_SECRET', '')

    IDENTITY_SECRET = os.getenv('IDENTITY_SECRET', '')
    IDENTITY_ALGORITHMS = os.getenv('IDENTITY_ALGORITHMS', 'HS256')
    IDENTITY_AUDIENCE = os.getenv('IDENTITY_AUDIENCE') or None
    IDENTITY_ISSUER = os.getenv('IDENTITY_ISSUER') or None

    RESEND_API_KEY = os.getenv('RESEND_API_KEY', '')
    MAIL_FROM = os.getenv('MAIL_FROM', 'The Bihari Makhana <thebiharimakhana@gmail.com>')

    STORE_NAME = os.getenv('STORE_NAME', 'The Bihari Makhana')
    STORE_ADDRESS = os.getenv('STORE_ADDRESS', 'Bhagalpur, Bihar, India')
    CONTACT_EMAIL = os.getenv('CONTACT_EMAIL', 'thebiharimakhana@gmail.com')

    PERMISSIVE_STATUS_CHANGES = _flag('PERMISSIVE_STATUS_CHANGES')
    NOTIFICATION_MAX_ATTEMPTS = _int('NOTIFICATION_MAX_ATTEMPTS', '3')
    # a send claimed longer ago than this is presumed dead and retried
    NOTIFICATION_CLAIM_TIMEOUT_MINUTES = _int('NOTIFICATION_CLAIM_TIMEOUT_MINUTES', '15')
    DELETION_CODE_TTL_MINUTES = _int('DELETION_CODE_TTL_MINUTES', '10')

    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
