import pytest
from pydantic import ValidationError

from eventteams.config import Settings
from eventteams.services.code_allocator import CodeAllocator
from eventteams.schemas import (
    MemberAddDirect,
    TeamCreate,
    TeamRename,
    TeamStatusUpdate,
    clean_team_name,
    clean_unique_id,
)


def test_team_name_is_trimmed():
    assert clean_team_name("  Falcons  ") == "Falcons"
    assert TeamCreate(name=" Falcons ").name == "Falcons"


@pytest.mark.parametrize("bad", ["", "   ", "<b>bold</b>", "two\nlines", "x" * 65])
def test_bad_team_names_are_rejected(bad):
    with pytest.raises(ValidationError):
        TeamRename(name=bad)


def test_control_characters_are_stripped():
    assert clean_team_name("Fal\x00cons") == "Falcons"


def test_unique_id_rules():
    assert clean_unique_id(" RAIoT_42 ") == "RAIoT_42"
    with pytest.raises(ValueError):
        clean_unique_id("has space")
    with pytest.raises(ValueError):
        clean_unique_id(None)
    with pytest.raises(ValidationError):
        MemberAddDirect(unique_id="a" * 33)


def test_max_size_must_be_positive():
    assert TeamCreate(name="Falcons").max_size is None
    with pytest.raises(ValidationError):
        TeamCreate(name="Falcons", max_size=0)


def test_status_update_accepts_only_known_statuses():
    assert TeamStatusUpdate(status="closed").status == "closed"
    with pytest.raises(ValidationError):
        TeamStatusUpdate(status="archived")


def test_settings_defaults():
    settings = Settings.from_env({})
    assert settings.team_code_prefix == "RAIoT"
    assert settings.tx_max_attempts == 8
    assert settings.allowed_origins == ()


def test_settings_read_environment():
    settings = Settings.from_env(
        {
            "TEAM_CODE_PREFIX": "HACK",
            "TEAM_TX_MAX_ATTEMPTS": "2",
            "TEAM_TX_BACKOFF_SECONDS": "0.5",
            "ALLOWED_ORIGINS": "https://a.example, https://b.example ,",
            "JWT_SECRET": "s3cret",
        }
    )
    assert settings.team_code_prefix == "HACK"
    assert settings.tx_max_attempts == 2
    assert settings.tx_backoff_seconds == 0.5
    assert settings.allowed_origins == ("https://a.example", "https://b.example")
    assert settings.jwt_secret == "s3cret"


def test_settings_fall_back_on_garbage():
    settings = Settings.from_env(
        {"TEAM_CODE_PREFIX": "  ", "TEAM_TX_MAX_ATTEMPTS": "zero", "TEAM_TX_BACKOFF_SECONDS": "-1"}
    )
    assert settings.team_code_prefix == "RAIoT"
    assert settings.tx_max_attempts == 8
    assert settings.tx_backoff_seconds == 0.0


def test_team_code_width_is_not_configurable():
    settings = Settings.from_env({"TEAM_CODE_PREFIX": "HACK", "TEAM_CODE_WIDTH": "3"})
    assert not hasattr(settings, "team_code_width")

    allocator = CodeAllocator(prefix=settings.team_code_prefix)
    assert allocator.format_code(7) == "HACK-00007"
    assert allocator.format_code(123456) == "HACK-123456"
