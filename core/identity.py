"""
Customer identity helpers.

Guests have no account, so their orders are attributed to a synthetic
customer id derived from the contact details they check out with:

    guest_<first 20 hex chars of sha256("<email>|<national phone>")>

The same email and phone always map to the same id, so repeat guest
orders can be looked up together.
"""
import hashlib
import re

GUEST_PREFIX = 'guest_'
_NON_DIGITS = re.compile(r'\D')


def normalize_email(email: str) -> str:
    return (email or '').strip().lower()


def normalize_phone(phone: str) -> str:
    """Reduce an Indian phone number to its 10 national digits."""
    digits = _NON_DIGITS.sub('', phone or '')
    if len(digits) == 12 and digits.startswith('91'):
        digits = digits[2:]
    elif len(digits) == 11 and digits.startswith('0'):
        digits = digits[1:]
    return digits


def is_valid_phone(phone: str) -> bool:
    digits = normalize_phone(phone)
    return len(digits) == 10 and digits[0] in '6789'


def guest_customer_id(email: str, phone: str) -> str:
    identifier = f"{normalize_email(email)}|{normalize_phone(phone)}"
    digest = hashlib.sha256(identifier.encode('utf-8')).hexdigest()
    return f"{GUEST_PREFIX}{digest[:20]}"


def is_guest_customer_id(customer_id: str) -> bool:
    return bool(customer_id) and customer_id.startswith(GUEST_PREFIX)


def customer_id_for_user(user) -> str:
    """Stable customer id for an authenticated Django user."""
    return f"user_{user.pk}"


def contact_matches(email: str, phone: str, other_email: str, other_phone: str) -> bool:
    return (
        normalize_email(email) == normalize_email(other_email)
        and normalize_phone(phone) == normalize_phone(other_phone)
    )


def request_customer_id(request):
    """Customer id for the authenticated user on a request, else None."""
    user = getattr(request, 'user', None)
    if user is not None and user.is_authenticated:
        return customer_id_for_user(user)
    return None
