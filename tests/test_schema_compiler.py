from __future__ import annotations

from enum import Enum
from typing import Optional

import pytest
from pydantic import BaseModel

from localfm.native.schema import (
    ArrayNode,
    BooleanNode,
    EnumNode,
    IntegerNode,
    LiteralNode,
    NumberNode,
    ObjectNode,
    ReferenceNode,
    StringNode,
    UnionNode,
    compile_schema,
)
from localfm.utils.exceptions import InvalidInput, InvalidSchema


def test_object_properties_keep_order_and_required_flags() -> None:
    compiled = compile_schema(
        {
            "type": "object",
            "required": ["a"],
            "properties": {"a": {"type": "string"}, "b": {"type": "integer"}},
        }
    )

    root = compiled.root
    assert isinstance(root, ObjectNode)
    assert [p.name for p in root.properties] == ["a", "b"]
    assert isinstance(root.properties[0].node, StringNode)
    assert root.properties[0].optional is False
    assert isinstance(root.properties[1].node, IntegerNode)
    assert root.properties[1].optional is True
    assert compiled.dependencies == {}


def test_compile_is_idempotent_for_plain_documents() -> None:
    doc = {
        "type": "object",
        "properties": {
            "tags": {"type": "array", "items": {"type": "string"}, "minItems": 1},
            "color": {"enum": ["red", "green"]},
            "nested": {"type": "object", "properties": {"x": {"type": "number"}}},
        },
    }

    first = compile_schema(doc)
    second = compile_schema(doc)

    assert first.root == second.root
    assert first.dependencies == second.dependencies


def test_any_of_single_value_enums_collapse_to_enum() -> None:
    compiled = compile_schema({"anyOf": [{"enum": ["x"]}, {"enum": ["y"]}, {"enum": ["z"]}]})

    assert isinstance(compiled.root, EnumNode)
    assert compiled.root.values == ("x", "y", "z")


def test_any_of_mixed_branches_build_union_with_literals() -> None:
    compiled = compile_schema({"anyOf": [{"enum": ["auto"]}, {"type": "integer"}]})

    root = compiled.root
    assert isinstance(root, UnionNode)
    assert root.variants == (LiteralNode("auto"), IntegerNode())
    assert root.to_json_schema() == {
        "anyOf": [{"type": "string", "enum": ["auto"]}, {"type": "integer"}]
    }


def test_any_of_null_branch_is_dropped() -> None:
    compiled = compile_schema({"anyOf": [{"type": "string"}, {"type": "null"}]})

    assert isinstance(compiled.root, StringNode)


def test_any_of_with_one_branch_stays_a_union() -> None:
    compiled = compile_schema({"anyOf": [{"type": "string"}]})

    assert isinstance(compiled.root, UnionNode)
    assert compiled.root.variants == (StringNode(),)


def test_root_reference_resolves_into_dependencies() -> None:
    compiled = compile_schema(
        {"definitions": {"Foo": {"type": "string"}}, "$ref": "#/definitions/Foo"}
    )

    assert compiled.root == ReferenceNode("Foo")
    assert list(compiled.dependencies) == ["Foo"]
    assert isinstance(compiled.dependencies["Foo"], StringNode)
    assert compiled.resolve("Foo") == StringNode()


def test_nested_references_are_not_inlined() -> None:
    compiled = compile_schema(
        {
            "type": "object",
            "properties": {
                "home": {"$ref": "#/definitions/Address"},
                "work": {"$ref": "#/definitions/Address"},
            },
            "definitions": {
                "Address": {
                    "type": "object",
                    "properties": {"street": {"type": "string"}},
                    "required": ["street"],
                }
            },
        }
    )

    root = compiled.root
    assert isinstance(root, ObjectNode)
    assert root.property("home").node == ReferenceNode("Address")
    assert root.property("work").node == ReferenceNode("Address")
    address = compiled.dependencies["Address"]
    assert isinstance(address, ObjectNode)
    assert address.name == "Address"


def test_dollar_defs_and_recursive_definitions() -> None:
    compiled = compile_schema(
        {
            "$defs": {
                "Node": {
                    "type": "object",
                    "properties": {
                        "value": {"type": "integer"},
                        "children": {"type": "array", "items": {"$ref": "#/$defs/Node"}},
                    },
                }
            },
            "$ref": "#/$defs/Node",
        }
    )

    node = compiled.resolve("Node")
    assert isinstance(node, ObjectNode)
    children = node.property("children").node
    assert isinstance(children, ArrayNode)
    assert children.element == ReferenceNode("Node")


def test_unresolvable_reference_raises() -> None:
    with pytest.raises(InvalidSchema):
        compile_schema({"$ref": "#/definitions/Missing"})

    with pytest.raises(InvalidSchema):
        compile_schema({"type": "object", "properties": {"a": {"$ref": "http://x/y.json"}}})


def test_non_object_document_raises_invalid_schema() -> None:
    with pytest.raises(InvalidSchema) as exc_info:
        compile_schema(["not", "an", "object"])  # type: ignore[arg-type]

    assert isinstance(exc_info.value, InvalidInput)
    assert exc_info.value.error_code == "INVALID_SCHEMA"


def test_unknown_and_missing_types_degrade_to_string() -> None:
    compiled = compile_schema(
        {
            "type": "object",
            "properties": {
                "weird": {"type": "date-time"},
                "untyped": {},
                "array_without_items": {"type": "array"},
                "flag": {"type": ["boolean", "null"]},
                "ratio": {"type": "number"},
            },
        }
    )

    root = compiled.root
    assert isinstance(root.property("weird").node, StringNode)
    assert isinstance(root.property("untyped").node, StringNode)
    assert root.property("array_without_items").node == ArrayNode(element=StringNode())
    assert isinstance(root.property("flag").node, BooleanNode)
    assert isinstance(root.property("ratio").node, NumberNode)


def test_anonymous_names_are_unique_within_one_compile() -> None:
    compiled = compile_schema(
        {
            "type": "object",
            "properties": {
                "a": {"type": "object", "title": "Item", "properties": {}},
                "b": {"type": "object", "title": "Item", "properties": {}},
                "c": {"enum": ["x", "y"]},
                "d": {"enum": ["x", "y"]},
            },
        }
    )

    root = compiled.root
    names = [root.property(key).node.name for key in ("a", "b", "c", "d")]
    assert len(set(names)) == len(names)
    assert names[0] == "Item"
    assert names[1] == "Item_2"


def test_const_becomes_single_value_enum() -> None:
    compiled = compile_schema({"const": "fixed"})

    assert isinstance(compiled.root, EnumNode)
    assert compiled.root.values == ("fixed",)


def test_to_json_schema_renders_defs_and_strict_objects() -> None:
    compiled = compile_schema(
        {
            "type": "object",
            "properties": {"pet": {"$ref": "#/definitions/Pet"}},
            "required": ["pet"],
            "definitions": {"Pet": {"enum": ["cat", "dog"]}},
        }
    )

    assert compiled.to_json_schema() == {
        "type": "object",
        "properties": {"pet": {"$ref": "#/$defs/Pet"}},
        "additionalProperties": False,
        "required": ["pet"],
        "$defs": {"Pet": {"type": "string", "enum": ["cat", "dog"]}},
    }


class Color(str, Enum):
    RED = "red"
    BLUE = "blue"


class Pet(BaseModel):
    name: str
    age: int
    color: Color
    nickname: Optional[str] = None


def test_pydantic_model_is_compiled_from_its_json_schema() -> None:
    compiled = compile_schema(Pet)

    assert compiled.name == "Pet"
    root = compiled.root
    assert isinstance(root, ObjectNode)
    assert root.property("name").optional is False
    assert isinstance(root.property("age").node, IntegerNode)
    assert root.property("color").node == ReferenceNode("Color")
    assert isinstance(root.property("nickname").node, StringNode)
    assert root.property("nickname").optional is True
    assert compiled.resolve("Color") == EnumNode(name="Color", values=("red", "blue"))
