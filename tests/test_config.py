"""Tests for settings.conf loading and validation."""

from decimal import Decimal

import pytest

from config import DEFAULTS, SettingsError
from config.lib.load_settings_conf import load_settings_conf, validate_settings


def write_settings(tmp_path, body):
    (tmp_path / 'settings.conf').write_text('[DEFAULT]\n' + body)
    return str(tmp_path)


def test_defaults_without_file(tmp_path):
    settings = load_settings_conf(str(tmp_path))

    assert settings['platform_fee_rate'] == Decimal('0.05')
    assert settings['pending_payment_expiration_minutes'] == 30
    assert settings['record_noop_status_events'] is False
    assert settings['payment_gateway'] == 'sandbox'
    assert settings['default_currency'] == 'BRL'


def test_missing_file_when_required(tmp_path):
    with pytest.raises(SettingsError):
        load_settings_conf(str(tmp_path), required=True)


def test_file_overrides_defaults(tmp_path):
    path = write_settings(tmp_path, (
        'db_url = postgresql://app@db:5432/shop\n'
        'platform_fee_rate = 0.08\n'
        'record_noop_status_events = yes\n'
        'default_currency = usd\n'
        'log_level = debug\n'
    ))

    settings = load_settings_conf(path)

    assert settings['db_url'] == 'postgresql://app@db:5432/shop'
    assert settings['platform_fee_rate'] == Decimal('0.08')
    assert settings['record_noop_status_events'] is True
    assert settings['default_currency'] == 'USD'
    assert settings['log_level'] == 'DEBUG'
    assert settings['api_port'] == 8000


@pytest.mark.parametrize('override, message', [
    ({'platform_fee_rate': '1.5'}, 'platform_fee_rate'),
    ({'platform_fee_rate': 'five percent'}, 'platform_fee_rate'),
    ({'api_port': 'eighty'}, 'api_port'),
    ({'record_noop_status_events': 'maybe'}, 'record_noop_status_events'),
    ({'payment_gateway': 'stripe'}, 'payment_gateway'),
    ({'payment_gateway': 'http', 'payment_gateway_url': ''}, 'payment_gateway_url'),
    ({'db_min_pool_size': '5', 'db_max_pool_size': '2'}, 'db_max_pool_size'),
    ({'pending_payment_expiration_minutes': '0'}, 'pending_payment_expiration_minutes'),
])
def test_invalid_values(override, message):
    with pytest.raises(SettingsError) as exc_info:
        validate_settings(dict(DEFAULTS, **override))
    assert message in str(exc_info.value)


def test_empty_db_url_rejected(tmp_path):
    path = write_settings(tmp_path, 'db_url =\n')

    with pytest.raises(SettingsError) as exc_info:
        load_settings_conf(path)
    assert 'db_url' in str(exc_info.value)
