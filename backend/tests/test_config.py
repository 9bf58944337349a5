from __future__ import annotations

import pytest

from account_verification.core.config import Settings
from account_verification.core.exceptions import InvalidConfigurationError


def _production(**overrides) -> Settings:
    values = {
        "ENV": "production",
        "OPERATOR_API_KEY": "k" * 32,
        "SMTP_HOST": "smtp.example.com",
        "SMTP_FROM": "no-reply@example.com",
        "PUBLIC_BASE_URL": "https://verify.example.com",
    }
    values.update(overrides)
    return Settings(**values)


def test_verification_url_joins_base_and_token() -> None:
    settings = Settings(PUBLIC_BASE_URL="https://verify.example.com/")

    assert settings.verification_url("abc") == "https://verify.example.com/verify/abc"


def test_production_settings_pass_when_complete() -> None:
    _production().validate_runtime_security()


@pytest.mark.parametrize(
    ("overrides", "setting"),
    [
        ({"OPERATOR_API_KEY": ""}, "OPERATOR_API_KEY"),
        ({"SMTP_HOST": ""}, "SMTP_HOST"),
        ({"PUBLIC_BASE_URL": "http://verify.example.com"}, "PUBLIC_BASE_URL"),
    ],
)
def test_production_rejects_unsafe_settings(overrides, setting) -> None:
    with pytest.raises(InvalidConfigurationError) as excinfo:
        _production(**overrides).validate_runtime_security()

    assert excinfo.value.details == {"setting": setting}


def test_token_entropy_floor_is_enforced() -> None:
    with pytest.raises(ValueError):
        Settings(VERIFICATION_TOKEN_BYTES=8)
