"""
Tests for input validators.
"""

import pytest

from utils.errors import ProviderConfigurationError, ValidationError
from utils.validators import (
    sanitize_string,
    validate_authorization_code,
    validate_enabled_providers,
    validate_provider,
    validate_state_format,
    validate_user_id,
)


def test_validate_provider():
    assert validate_provider("github") == "github"
    with pytest.raises(ValidationError):
        validate_provider("dropbox")


@pytest.mark.parametrize(
    "state,ok",
    [
        ("a" * 64, True),
        ("0123456789abcdef" * 4, True),
        ("A" * 64, False),
        ("a" * 63, False),
        ("", False),
        ("g" * 64, False),
    ],
)
def test_state_format(state, ok):
    assert validate_state_format(state) is ok


def test_authorization_code():
    assert validate_authorization_code("4/0AX4XfWg-abc_123")
    assert not validate_authorization_code("")
    assert not validate_authorization_code("bad code<script>")
    assert not validate_authorization_code("x" * 513)


def test_user_id_normalised():
    assert validate_user_id("6F9619FF-8B86-D011-B42D-00C04FC964FF") == "6f9619ff-8b86-d011-b42d-00c04fc964ff"
    with pytest.raises(ValidationError):
        validate_user_id("not-a-uuid")


def test_sanitize_string():
    assert sanitize_string("  access_denied\x00\n ") == "access_denied"
    assert sanitize_string("x" * 20, 5) == "xxxxx"
    assert sanitize_string(None) == ""


def test_enabled_providers():
    validate_enabled_providers(["github", "slack"])
    with pytest.raises(ProviderConfigurationError):
        validate_enabled_providers(["github", "dropbox"])
