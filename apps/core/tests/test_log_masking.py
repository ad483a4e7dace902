"""
Tests for PII masking in log output.
"""
import json
import logging

import pytest

from apps.core.logging import JSONFormatter, PIIMasker, SanitizingFormatter, SecurityLogger


def make_record(message, **extra):
    record = logging.LogRecord('apps.test', logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestPIIMasker:

    def test_mask_email(self):
        assert PIIMasker.mask_email('contact alice@example.com now') == 'contact a****@example.com now'

    def test_mask_secrets(self):
        assert PIIMasker.mask_secrets('token=abc123 sent') == 'token: ******** sent'
        assert 'hunter2' not in PIIMasker.mask_secrets('password: "hunter2"')

    def test_mask_dict(self):
        masked = PIIMasker.mask_dict({
            'token': 'raw-token',
            'password_hash': 'pbkdf2$...',
            'email': 'bob@example.com',
            'nested': {'secret': 'x', 'note': 'mail carol@example.com'},
            'items': [{'token': 'y'}, 'dave@example.com', 3],
            'count': 2,
        })

        assert masked['token'] == '********'
        assert masked['password_hash'] == '********'
        assert masked['email'] == 'b**@example.com'
        assert masked['nested'] == {'secret': '********', 'note': 'mail c****@example.com'}
        assert masked['items'] == [{'token': '********'}, 'd***@example.com', 3]
        assert masked['count'] == 2

    def test_empty_sensitive_value_kept(self):
        assert PIIMasker.mask_dict({'token': ''}) == {'token': ''}


class TestFormatters:

    def test_json_formatter_masks_message_and_extras(self):
        record = make_record('Invite sent to erin@example.com', invite_token='abc', request_id='r-1', role_id='x')

        data = json.loads(JSONFormatter().format(record))

        assert data['message'] == 'Invite sent to e***@example.com'
        assert data['request_id'] == 'r-1'
        assert data['invite_token'] == '********'
        assert data['role_id'] == 'x'
        assert data['level'] == 'INFO'

    def test_json_formatter_stringifies_unserializable_extras(self):
        record = make_record('x', payload={1, 2})
        data = json.loads(JSONFormatter().format(record))
        assert isinstance(data['payload'], str)

    def test_sanitizing_formatter(self):
        record = make_record('login failed for frank@example.com')
        assert SanitizingFormatter('%(message)s').format(record) == 'login failed for f****@example.com'


@pytest.fixture
def security_records(caplog):
    """The security logger does not propagate; attach caplog's handler to it directly."""
    security_logger = logging.getLogger('security')
    security_logger.addHandler(caplog.handler)
    caplog.set_level(logging.INFO, logger='security')
    yield caplog
    security_logger.removeHandler(caplog.handler)


class TestSecurityLogger:

    def test_events_go_to_security_logger_masked(self, security_records):
        SecurityLogger.log_invite_event('created', 'inv-1', 'co-1', email='grace@example.com', actor_id=None)

        record = security_records.records[-1]
        assert record.name == 'security'
        assert record.event_type == 'invite_created'
        assert record.email == 'g****@example.com'
        assert not hasattr(record, 'actor_id')

    def test_permission_denied_event(self, security_records):
        SecurityLogger.log_permission_denied('u-1', 'c-1', ('role:read',), ('role:read',),
                                             reason='missing_permissions')

        record = security_records.records[-1]
        assert record.levelno == logging.WARNING
        assert record.missing_permissions == ['role:read']
        assert record.reason == 'missing_permissions'
