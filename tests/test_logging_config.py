"""Tests for log secret masking."""

import logging

import pytest

from common.logging_config import SensitiveDataFilter, setup_logging


def make_record(msg, args=None):
    return logging.LogRecord('walbucket', logging.INFO, __file__, 1, msg, args, None)


@pytest.mark.parametrize('message,secret', [
    ('api_key=wb_live_abc123', 'wb_live_abc123'),
    ("config {'private_key': 'deadbeef'}", 'deadbeef'),
    ('session_key: sk-12345', 'sk-12345'),
    ('loaded suiprivkey1qqexamplekey', 'suiprivkey1qqexamplekey'),
    ('sent Bearer tok3n', 'tok3n'),
])
def test_secrets_are_masked(message, secret):
    record = make_record(message)

    SensitiveDataFilter().filter(record)

    assert secret not in record.getMessage()
    assert '***MASKED***' in record.getMessage()


def test_arguments_are_masked():
    record = make_record('%s', ('password=hunter2',))

    SensitiveDataFilter().filter(record)

    assert 'hunter2' not in record.getMessage()


def test_plain_messages_untouched():
    record = make_record('Asset uploaded [asset_id=0xabc, size=10]')

    SensitiveDataFilter().filter(record)

    assert record.getMessage() == 'Asset uploaded [asset_id=0xabc, size=10]'


def test_setup_logging_installs_single_masked_handler():
    logger = setup_logging('walbucket-test-component', log_level='DEBUG')
    assert logger.level == logging.DEBUG

    again = setup_logging('walbucket-test-component', log_level='WARNING')

    assert again is logger
    assert len(logger.handlers) == 1
    assert logger.propagate is False
    assert any(isinstance(f, SensitiveDataFilter) for f in logger.handlers[0].filters)
