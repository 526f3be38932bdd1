"""
Validation utilities
"""
from decimal import Decimal, InvalidOperation
from urllib.parse import urlparse

from flux.errors import ValidationError
from flux.models.order import PACKAGE_TYPES

MIN_ADDRESS_LENGTH = 5
MAX_ADDRESS_LENGTH = 500
MAX_NOTES_LENGTH = 500
MAX_CUSTOMER_NAME_LENGTH = 120
MAX_CUSTOMER_PHONE_LENGTH = 30
MIN_PRICE = Decimal('0')
MAX_PRICE = Decimal('10000')
MAX_TOTAL_VALUE = Decimal('100000')


def parse_money(value, field):
    """
    Parse a monetary amount into a two-place Decimal

    Args:
        value: number or numeric string
        field (str): Field name used in the error message

    Returns:
        Decimal: Amount rounded to cents
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f'{field} must be a number')
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f'{field} must be a number')
    if not amount.is_finite():
        raise ValidationError(f'{field} must be a number')
    return amount.quantize(Decimal('0.01'))


def _check_address(value, field):
    if not isinstance(value, str) or len(value.strip()) < MIN_ADDRESS_LENGTH:
        raise ValidationError(
            f'{field} is too short (minimum {MIN_ADDRESS_LENGTH} characters)', field=field
        )
    if len(value) > MAX_ADDRESS_LENGTH:
        raise ValidationError(
            f'{field} is too long (maximum {MAX_ADDRESS_LENGTH} characters)', field=field
        )
    return value.strip()


def _check_optional_text(value, field, max_length):
    if value is None or value == '':
        return None
    if not isinstance(value, str):
        raise ValidationError(f'{field} must be a string', field=field)
    if len(value) > max_length:
        raise ValidationError(f'{field} is too long (maximum {max_length} characters)', field=field)
    return value


def validate_delivery(data, index=0):
    """
    Validate one delivery of a new order

    Args:
        data (dict): Raw delivery payload
        index (int): Position in the order, reported in error messages

    Returns:
        dict: Normalised column values for OrderDelivery
    """
    if not isinstance(data, dict):
        raise ValidationError(f'deliveries[{index}] must be an object')

    pickup = _check_address(data.get('pickup_address'), 'pickup_address')
    dropoff = _check_address(data.get('dropoff_address'), 'dropoff_address')

    package_type = data.get('package_type') or 'other'
    if package_type not in PACKAGE_TYPES:
        raise ValidationError(
            f'package_type must be one of: {", ".join(PACKAGE_TYPES)}', field='package_type'
        )

    price = parse_money(data.get('suggested_price'), 'suggested_price')
    if price < MIN_PRICE or price > MAX_PRICE:
        raise ValidationError(
            f'suggested_price must be between {MIN_PRICE} and {MAX_PRICE}', field='suggested_price'
        )

    return {
        'position': index,
        'pickup_address': pickup,
        'dropoff_address': dropoff,
        'package_type': package_type,
        'notes': _check_optional_text(data.get('notes'), 'notes', MAX_NOTES_LENGTH),
        'customer_name': _check_optional_text(data.get('customer_name'), 'customer_name', MAX_CUSTOMER_NAME_LENGTH),
        'customer_phone': _check_optional_text(data.get('customer_phone'), 'customer_phone', MAX_CUSTOMER_PHONE_LENGTH),
        'suggested_price': price,
    }


def validate_order(deliveries, total_value):
    """
    Validate a whole order, stopping at the first violated constraint

    Returns:
        tuple: (list of normalised deliveries, Decimal total)
    """
    if not isinstance(deliveries, list) or not deliveries:
        raise ValidationError('An order needs at least one delivery', field='deliveries')

    cleaned = [validate_delivery(d, i) for i, d in enumerate(deliveries)]

    total = parse_money(total_value, 'total_value')
    if total < MIN_PRICE or total > MAX_TOTAL_VALUE:
        raise ValidationError(
            f'total_value must be between {MIN_PRICE} and {MAX_TOTAL_VALUE}', field='total_value'
        )
    return cleaned, total


def is_allowed_redirect_url(url, allowed_hosts):
    """
    Check a checkout callback URL is HTTPS on an allow-listed host

    Returns:
        bool: True if allowed, False otherwise
    """
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme == 'https' and (parsed.hostname or '') in set(allowed_hosts)
