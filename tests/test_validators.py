"""
Input validation tests for Flux
"""
from decimal import Decimal

import pytest

from conftest import delivery_payload
from flux.errors import ValidationError
from flux.utils.validators import (
    is_allowed_redirect_url, parse_money, validate_delivery, validate_order,
)

ALLOWED_HOSTS = ['iflux.space', 'www.iflux.space', 'app.iflux.space']


class TestParseMoney:
    """Test monetary parsing"""

    @pytest.mark.parametrize('raw, expected', [
        (10, Decimal('10.00')),
        ('18.5', Decimal('18.50')),
        (7.999, Decimal('8.00')),
        ('0', Decimal('0.00')),
    ])
    def test_valid_amounts(self, raw, expected):
        assert parse_money(raw, 'price') == expected

    @pytest.mark.parametrize('raw', [None, True, 'abc', '', 'NaN', 'Infinity', [1]])
    def test_invalid_amounts(self, raw):
        with pytest.raises(ValidationError):
            parse_money(raw, 'price')


class TestDeliveryValidation:
    """Test per-delivery rules"""

    def test_normalises_delivery(self):
        cleaned = validate_delivery(delivery_payload(pickup_address='  Rua A, 10  ', notes=''), index=3)

        assert cleaned['position'] == 3
        assert cleaned['pickup_address'] == 'Rua A, 10'
        assert cleaned['notes'] is None
        assert cleaned['suggested_price'] == Decimal('18.50')

    def test_package_type_defaults_to_other(self):
        data = delivery_payload()
        del data['package_type']
        assert validate_delivery(data)['package_type'] == 'other'

    def test_price_limits_are_inclusive(self):
        assert validate_delivery(delivery_payload(suggested_price=0))['suggested_price'] == Decimal('0.00')
        assert validate_delivery(delivery_payload(suggested_price=10000))['suggested_price'] == Decimal('10000.00')

    def test_address_exactly_minimum_length(self):
        assert validate_delivery(delivery_payload(dropoff_address='Rua 1'))['dropoff_address'] == 'Rua 1'

    def test_non_object_delivery(self):
        with pytest.raises(ValidationError):
            validate_delivery('Rua A, 10')

    def test_first_violation_is_reported(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_order([delivery_payload(), delivery_payload(pickup_address='x')], 10)
        assert exc_info.value.extra['field'] == 'pickup_address'


class TestRedirectUrls:
    """Test the checkout redirect allow-list"""

    @pytest.mark.parametrize('url', [
        'https://iflux.space/#planos',
        'https://app.iflux.space/creditos?checkout=success',
        'https://www.iflux.space/',
    ])
    def test_allowed(self, url):
        assert is_allowed_redirect_url(url, ALLOWED_HOSTS) is True

    @pytest.mark.parametrize('url', [
        None,
        '',
        'http://iflux.space/',
        'https://evil.com/?next=iflux.space',
        'https://iflux.space@evil.com/',
        '//iflux.space/',
        'not a url',
    ])
    def test_rejected(self, url):
        assert is_allowed_redirect_url(url, ALLOWED_HOSTS) is False
