"""Tests for the exception hierarchy defaults."""

import pytest

from toshia.exceptions import (
    AssistantError,
    CommandDefinitionError,
    ConfigurationError,
    ErrorCategory,
    PersistenceError,
    StartupError,
    ToshiaError,
    TransportError,
)


@pytest.mark.parametrize("cls,category,module", [
    (ToshiaError, ErrorCategory.PERMANENT, None),
    (ConfigurationError, ErrorCategory.INFRASTRUCTURE, "config"),
    (StartupError, ErrorCategory.INFRASTRUCTURE, "bot"),
    (TransportError, ErrorCategory.TRANSIENT, "telegram"),
    (PersistenceError, ErrorCategory.INFRASTRUCTURE, "chat_state"),
    (CommandDefinitionError, ErrorCategory.PERMANENT, "commands"),
    (AssistantError, ErrorCategory.TRANSIENT, "assistant_runner"),
])
def test_defaults(cls, category, module):
    err = cls("boom")
    assert err.category == category
    assert err.module == module
    assert err.is_retryable is (category == ErrorCategory.TRANSIENT)


def test_category_override():
    err = TransportError("Bad Request", status=400, category=ErrorCategory.PERMANENT)
    assert not err.is_retryable
    assert err.status == 400


def test_str_includes_module_and_context():
    err = PersistenceError("Error creating database file", path="/x/group.json", error="denied")
    assert str(err) == "Error creating database file [module=chat_state] (error=denied)"
    assert err.path == "/x/group.json"


def test_str_falls_back_to_class_name():
    assert str(ToshiaError()) == "ToshiaError"


@pytest.mark.parametrize("status,expected", [(401, True), (404, True), (500, False), (None, False)])
def test_transport_unauthorized(status, expected):
    assert TransportError("x", status=status).is_unauthorized is expected


def test_definition_error_fields():
    err = CommandDefinitionError("Invalid command definition", source_name="ping", missing=["author"])
    assert err.source_name == "ping"
    assert err.missing == ["author"]
    assert CommandDefinitionError().missing == []
