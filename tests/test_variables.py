import pytest

from stepflow.core.errors import UndefinedVariableError
from stepflow.core.variables import VariableEnvironment, placeholder_names, render_value


def test_resolve_substitutes_every_placeholder():
    env = VariableEnvironment({"title": "Welcome", "count": 3})
    assert env.resolve("{{title}} x{{ count }}") == "Welcome x3"
    assert env.resolve("no placeholders") == "no placeholders"


def test_undefined_name_raises():
    env = VariableEnvironment()
    with pytest.raises(UndefinedVariableError) as excinfo:
        env.resolve("Hello {{who}}")
    assert excinfo.value.name == "who"


def test_non_string_values_render_as_json():
    assert render_value(True) == "true"
    assert render_value(None) == "null"
    assert render_value(2.5) == "2.5"
    assert render_value({"a": [1, 2]}) == '{"a": [1, 2]}'


def test_dotted_names_walk_nested_values():
    env = VariableEnvironment({"inputs": {"url": "https://a.test", "ids": [7, 8]}, "a.b": "literal"})
    assert env.resolve("{{inputs.url}}") == "https://a.test"
    assert env.resolve("{{inputs.ids.1}}") == "8"
    assert env.resolve("{{a.b}}") == "literal"
    with pytest.raises(UndefinedVariableError):
        env.resolve("{{inputs.missing}}")


def test_scope_shadows_and_is_dropped():
    env = VariableEnvironment({"index": "outer"})
    with env.scope({"index": 2, "item": "row"}):
        assert env.resolve("{{index}}/{{item}}") == "2/row"
    assert env.get("index") == "outer"
    assert "item" not in env


def test_set_overwrites():
    env = VariableEnvironment()
    env.set("title", "a")
    env.set("title", "b")
    assert env.get("title") == "b"
    assert "title" in env
    assert env.all() == {"title": "b"}


def test_scoped_bindings_are_not_in_the_snapshot():
    env = VariableEnvironment({"x": 1})
    with env.scope({"index": 0}):
        env.set("y", 2)
        assert env.all() == {"x": 1, "y": 2}


def test_placeholder_names():
    assert placeholder_names("{{a}} and {{ b.c }}") == ["a", "b.c"]
