import logging

import pytest

from imaginify.config import Settings
from imaginify.database import Database
from imaginify.errors import AppError, MissingConfigurationError, NotFoundError, handle_error


def test_app_errors_pass_through(caplog):
    original = NotFoundError("Image not found")
    with caplog.at_level(logging.ERROR):
        with pytest.raises(NotFoundError) as exc:
            try:
                raise original
            except Exception as e:
                handle_error(e)
    assert exc.value is original
    assert "[NOT_FOUND] Image not found" in caplog.text


def test_foreign_exceptions_are_wrapped():
    with pytest.raises(AppError) as exc:
        try:
            raise KeyError("publicId")
        except Exception as e:
            handle_error(e)
    assert exc.value.status_code == 500
    assert exc.value.code == "KEYERROR"
    assert isinstance(exc.value.__cause__, KeyError)


def test_strings_are_wrapped():
    with pytest.raises(AppError) as exc:
        handle_error("something odd")
    assert exc.value.code == "UNKNOWN_ERROR"
    assert exc.value.message == "something odd"


def test_missing_database_url_is_a_configuration_error():
    with pytest.raises(MissingConfigurationError) as exc:
        Database(None).connect()
    assert exc.value.code == "MISSING_CONFIGURATION"


def test_settings_report_every_missing_variable():
    settings = Settings(_env_file=None, secret_key="s", database_url=None)
    with pytest.raises(MissingConfigurationError) as exc:
        settings.validate_required()
    assert "google_client_id" in exc.value.message
    assert "database_url" in exc.value.message
    assert "secret_key" not in exc.value.message


def test_postgres_scheme_is_patched():
    settings = Settings(_env_file=None, database_url="postgres://u:p@host/db")
    assert settings.patched_database_url == "postgresql://u:p@host/db"
