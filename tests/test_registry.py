"""Tests for command definition validation and the registry."""

import pytest

from toshia.commands import CommandRegistry, builtin_sources
from toshia.commands.base import AccessTier, CommandDefinition
from toshia.exceptions import CommandDefinitionError


async def _noop(ctx):
    return None


def _source(**overrides):
    source = {
        "name": "Ping",
        "description": "Check the bot",
        "access": "anyone",
        "usage": "",
        "author": "tester",
        "category": "utility",
        "aliases": ["P", "pong"],
        "handler": _noop,
    }
    source.update(overrides)
    return source


def test_lookup_by_name_and_every_alias_returns_same_definition():
    registry, errors = CommandRegistry.load([_source()])
    assert errors == []
    definition = registry.lookup("ping")
    assert definition is not None
    for key in ("PING", "p", "Pong"):
        assert registry.lookup(key) is definition


def test_names_are_lowercased():
    registry, _ = CommandRegistry.load([_source()])
    definition = registry.lookup("ping")
    assert definition.name == "ping"
    assert definition.aliases == ("p", "pong")


def test_lookup_missing_returns_none():
    registry, _ = CommandRegistry.load([_source()])
    assert registry.lookup("nope") is None


@pytest.mark.parametrize("field_name", ["name", "description", "access", "author", "category"])
def test_missing_required_field_is_rejected(field_name):
    bad = _source(name="bad")
    del bad[field_name]
    registry, errors = CommandRegistry.load([bad, _source()])

    assert len(errors) == 1
    assert isinstance(errors[0], CommandDefinitionError)
    assert field_name in errors[0].missing
    # the valid source still loads
    assert registry.lookup("ping") is not None
    assert len(registry.all_definitions()) == 1


def test_empty_required_field_is_rejected():
    registry, errors = CommandRegistry.load([_source(author="  ")])
    assert errors[0].missing == ["author"]
    assert registry.lookup("ping") is None


def test_missing_handler_is_rejected():
    registry, errors = CommandRegistry.load([_source(handler=None)])
    assert errors[0].missing == ["handler"]
    assert len(registry) == 0


def test_usage_and_aliases_are_optional():
    source = _source()
    del source["usage"]
    del source["aliases"]
    registry, errors = CommandRegistry.load([source])
    assert errors == []
    definition = registry.lookup("ping")
    assert definition.usage == ()
    assert definition.aliases == ()
    assert definition.format_usage() == "/ping"


def test_format_usage_multiple_templates():
    definition = CommandDefinition.from_source(
        _source(name="group", usage=["", "<flag> <on|off>"])
    )
    assert definition.format_usage() == "/group\n/group <flag> <on|off>"


def test_alias_collision_is_last_write_wins():
    first = _source(name="alpha", aliases=["x"])
    second = _source(name="beta", aliases=["x"])
    registry, _ = CommandRegistry.load([first, second])
    assert registry.lookup("x").name == "beta"
    assert registry.lookup("alpha").name == "alpha"


def test_all_definitions_are_distinct_by_primary_name():
    registry, _ = CommandRegistry.load([
        _source(name="alpha", aliases=["a", "aa"]),
        _source(name="beta", aliases=[]),
    ])
    assert [d.name for d in registry.all_definitions()] == ["alpha", "beta"]


def test_command_names_include_aliases_in_order():
    registry, _ = CommandRegistry.load([
        _source(name="alpha", aliases=["a"]),
        _source(name="beta", aliases=["b"]),
    ])
    assert registry.command_names == ["alpha", "a", "beta", "b"]


def test_unknown_access_tier_is_registered_but_flagged():
    registry, errors = CommandRegistry.load([_source(access="superuser")])
    assert errors == []
    definition = registry.lookup("ping")
    assert definition.access == "superuser"
    assert definition.tier is None


def test_known_tier_is_parsed():
    definition = CommandDefinition.from_source(_source(access="Admin"))
    assert definition.tier is AccessTier.ADMIN


def test_builtin_sources_all_load():
    registry, errors = CommandRegistry.load(builtin_sources())
    assert errors == []
    assert {d.name for d in registry.all_definitions()} == {"help", "ping", "group"}
    assert registry.lookup("commands").name == "help"
