import pytest

from services.arg_schema import REQUIRED, choice, optional, required, schema
from services.commands_registry import CommandRegistry, CommandSpec, RegistryError


def _noop(ctx):
    return None


def _registry():
    return CommandRegistry(
        [
            CommandSpec("role", schema(choice("action", REQUIRED, ["add", "remove"]), required("roleIds...")), _noop),
            CommandSpec("guilds", schema(), _noop, admin_only=True, group="Admin"),
            CommandSpec("help", schema(optional("topic")), _noop),
        ]
    )


def test_lookup_and_registration_order():
    registry = _registry()
    assert list(registry) == ["role", "guilds", "help"]
    assert "role" in registry
    assert registry.get("missing") is None
    assert len(registry) == 3


def test_usage_strings():
    registry = _registry()
    assert registry.usage("role") == '.role <action: "add|remove"> <roleIds...>'
    assert registry.usage("guilds") == ".guilds"
    assert registry.usage("help", prefix="!") == "!help [topic]"


def test_registry_is_read_only():
    registry = _registry()
    with pytest.raises(TypeError):
        registry["new"] = registry["role"]
    with pytest.raises(TypeError):
        registry._commands["new"] = registry["role"]


def test_duplicate_and_invalid_names_rejected():
    with pytest.raises(RegistryError):
        CommandRegistry([CommandSpec("a", schema(), _noop), CommandSpec("a", schema(), _noop)])
    with pytest.raises(RegistryError):
        CommandRegistry([CommandSpec("two words", schema(), _noop)])
    with pytest.raises(RegistryError):
        CommandRegistry([CommandSpec("", schema(), _noop)])


def test_visibility_and_grouping():
    registry = _registry()
    assert [s.name for s in registry.visible_to(False)] == ["role", "help"]
    assert [s.name for s in registry.visible_to(True)] == ["role", "guilds", "help"]
    assert list(registry.grouped(is_admin=False)) == ["General"]
    assert list(registry.grouped(is_admin=True)) == ["General", "Admin"]


def test_registry_validation_flags_missing_handlers_and_groups():
    registry = CommandRegistry(
        [
            CommandSpec("a", schema(), None),
            CommandSpec("b", schema(), _noop, group="Nowhere"),
        ]
    )
    assert registry.validate() == [
        "Missing handler: a",
        "Unknown command group 'Nowhere' on b",
    ]
    assert _registry().validate() == []
    assert CommandRegistry([]).validate() == ["No commands registered"]
