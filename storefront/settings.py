"""
Editable storefront copy (headline, banner, policies, contact details).

Stored as key/value rows. Keys that were never saved fall back to DEFAULTS,
and only keys listed there can be written.
"""

import logging

from sqlalchemy import select

from storefront.errors import ValidationError
from storefront.models import SiteSettingRow

logger = logging.getLogger(__name__)

DEFAULTS = {
    'homepage_headline': 'Authentic Makhana from the Heart of Bihar',
    'homepage_subheadline': (
        'Experience the crunchy, healthy, and delicious superfood, delivered right to your doorstep.'
    ),
    'banner_text': 'Free Shipping on All Orders Above ₹500!',
    'primary_color': '#F97316',
    'body_font': 'Inter',
    'about_us_content': (
        "Bihari Makhana celebrates the rich heritage of Mithila, Bihar, a region renowned for producing "
        "over 90% of the world's Fox Nuts. Our makhana is ethically sourced from local farmers who use "
        "traditional harvesting methods passed down through generations."
    ),
    'policies_shipping': (
        'We ship all orders within 3-5 business days. Shipping is free on all orders above ₹500. '
        'For all other orders, a flat rate of ₹99 will be charged.'
    ),
    'policies_returns': (
        'Due to the nature of our products, we do not accept returns. If your order arrives damaged, '
        'contact us within 48 hours with a video of opening the package.'
    ),
    'contact_email': 'thebiharimakhana@gmail.com',
    'contact_phone': '+91 7295901346',
    'contact_address': 'Bhagalpur, Bihar, India',
    'homepage_bg_image': '',
}


class SiteSettings:

    def __init__(self, session_factory):
        self._sessions = session_factory

    def all(self):
        settings = dict(DEFAULTS)
        with self._sessions() as session:
            for row in session.execute(select(SiteSettingRow)).scalars():
                settings[row.key] = row.value
        return settings

    def update(self, values):
        """upsert the given keys; returns the full settings afterwards"""
        if not isinstance(values, dict) or not values:
            raise ValidationError('No settings given')
        unknown = sorted(set(values) - set(DEFAULTS))
        if unknown:
            raise ValidationError(f'Unknown settings: {", ".join(unknown)}')
        for key, value in values.items():
            if value is not None and not isinstance(value, str):
                raise ValidationError(f'{key} must be text')

        with self._sessions.begin() as session:
            for key, value in values.items():
                row = session.get(SiteSettingRow, key)
                if row is None:
                    session.add(SiteSettingRow(key=key, value=value))
                else:
                    row.value = value
        logger.info('site settings updated: %s', ', '.join(sorted(values)))
        return self.all()
