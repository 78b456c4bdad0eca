"""
Address snapshots copied onto an order at checkout.

An Address is immutable; orders store it as flat shipping_* / billing_*
columns so editing a saved address later never rewrites history.
"""
import re
from dataclasses import asdict, dataclass, fields

from .exceptions import OrderValidationError

_POSTAL_CODE = re.compile(r'^[1-9][0-9]{5}$')

REQUIRED_FIELDS = ('first_name', 'address_line1', 'city', 'state', 'postal_code')


@dataclass(frozen=True)
class Address:
    first_name: str
    address_line1: str
    city: str
    state: str
    postal_code: str
    last_name: str = ''
    address_line2: str = ''
    country: str = 'India'

    @classmethod
    def from_dict(cls, data, label='shipping') -> 'Address':
        if not isinstance(data, dict):
            raise OrderValidationError(f"{label.capitalize()} address is required")
        values = {
            f.name: str(data.get(f.name) or '').strip()
            for f in fields(cls)
        }
        missing = [name for name in REQUIRED_FIELDS if not values[name]]
        if missing:
            raise OrderValidationError(
                f"{label.capitalize()} address is missing: {', '.join(missing)}"
            )
        if values['country'] in ('', 'India') and not _POSTAL_CODE.match(values['postal_code']):
            raise OrderValidationError(
                f"{label.capitalize()} address has an invalid PIN code: {values['postal_code']}"
            )
        values['country'] = values['country'] or 'India'
        return cls(**values)

    def as_order_fields(self, prefix: str) -> dict:
        return {f"{prefix}_{name}": value for name, value in asdict(self).items()}
