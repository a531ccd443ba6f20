"""
Saved delivery addresses.

A customer keeps any number of addresses and picks one at checkout; the
checkout itself still receives the address as text, so deleting a saved
address never touches an order.
"""

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select

from storefront.errors import AddressNotFoundError, ValidationError
from storefront.models import AddressRow

logger = logging.getLogger(__name__)

# column -> (request key, max length)
FIELDS = {
    'full_name': ('fullName', 255),
    'phone_number': ('phoneNumber', 20),
    'street': ('street', 255),
    'locality': ('locality', 255),
    'city': ('city', 100),
    'pincode': ('pincode', 10),
    'state': ('state', 100),
    'country': ('country', 100),
}


@dataclass(frozen=True)
class Address:
    id: int
    user_id: str
    full_name: str
    phone_number: str
    street: str
    locality: str
    city: str
    pincode: str
    state: str
    country: str
    created_at: datetime

    def one_line(self):
        return f'{self.street}, {self.locality}, {self.city}, {self.state} {self.pincode}, {self.country}'

    def to_dict(self):
        data = {key: getattr(self, column) for column, (key, _) in FIELDS.items()}
        data.update({'id': self.id, 'createdAt': self.created_at.isoformat()})
        return data


def _to_address(row):
    return Address(row.id, row.user_uid, *(getattr(row, column) for column in FIELDS), row.created_at)


def parse_address(payload):
    """validated column values from request json (camelCase or column names)"""
    if not isinstance(payload, dict):
        raise ValidationError('Address details are required')
    values = {}
    for column, (key, max_length) in FIELDS.items():
        value = payload.get(key, payload.get(column))
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f'Missing required field: {key}')
        value = value.strip()
        if len(value) > max_length:
            raise ValidationError(f'{key} is too long')
        values[column] = value
    if not values['pincode'].isdigit():
        raise ValidationError('Pincode must be numeric')
    return values


class AddressBook:

    def __init__(self, session_factory):
        self._sessions = session_factory

    def list_for(self, user_id):
        with self._sessions() as session:
            rows = session.execute(
                select(AddressRow)
                .where(AddressRow.user_uid == user_id)
                .order_by(AddressRow.created_at.desc(), AddressRow.id.desc())
            ).scalars()
            return [_to_address(row) for row in rows]

    def add(self, user_id, payload):
        values = parse_address(payload)
        with self._sessions.begin() as session:
            row = AddressRow(user_uid=user_id, **values)
            session.add(row)
            session.flush()
            address = _to_address(row)
        logger.info('address %s saved for user %s', address.id, user_id)
        return address

    def delete(self, user_id, address_id):
        # scoped by owner: another user's id looks like a missing one
        with self._sessions.begin() as session:
            result = session.execute(
                delete(AddressRow).where(AddressRow.id == address_id, AddressRow.user_uid == user_id)
            )
            if result.rowcount != 1:
                raise AddressNotFoundError()
        logger.info('address %s deleted for user %s', address_id, user_id)
