"""Compile JSON-Schema documents into constraint nodes.

The compiled form is a closed set of node types that a model runtime can
enforce during generation. Named definitions are compiled once into the
dependency mapping and referenced by name from everywhere else, so a
definition is never inlined twice (recursive definitions stay finite).

Malformed or unrecognized fragments degrade to an unconstrained string. Only
documents that are not JSON objects, or `$ref`s that cannot be resolved
inside the document's definitions, raise `InvalidSchema`.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping

from pydantic import BaseModel

from localfm.utils.exceptions import InvalidSchema
from localfm.utils.logger import get_logger

logger = get_logger(__name__)

DEFINITION_PREFIXES = ("#/definitions/", "#/$defs/")


@dataclass(frozen=True, slots=True)
class StringNode:
    kind: Literal["string"] = "string"

    def to_json_schema(self) -> dict[str, Any]:
        return {"type": "string"}


@dataclass(frozen=True, slots=True)
class NumberNode:
    kind: Literal["number"] = "number"

    def to_json_schema(self) -> dict[str, Any]:
        return {"type": "number"}


@dataclass(frozen=True, slots=True)
class IntegerNode:
    kind: Literal["integer"] = "integer"

    def to_json_schema(self) -> dict[str, Any]:
        return {"type": "integer"}


@dataclass(frozen=True, slots=True)
class BooleanNode:
    kind: Literal["boolean"] = "boolean"

    def to_json_schema(self) -> dict[str, Any]:
        return {"type": "boolean"}


@dataclass(frozen=True, slots=True)
class LiteralNode:
    """A single allowed string, used for enum branches inside a union."""

    value: str
    kind: Literal["literal"] = "literal"

    def to_json_schema(self) -> dict[str, Any]:
        return {"type": "string", "enum": [self.value]}


@dataclass(frozen=True, slots=True)
class ArrayNode:
    element: ConstraintNode
    min_items: int | None = None
    max_items: int | None = None
    kind: Literal["array"] = "array"

    def to_json_schema(self) -> dict[str, Any]:
        schema: dict[str, Any] = {"type": "array", "items": self.element.to_json_schema()}
        if self.min_items is not None:
            schema["minItems"] = self.min_items
        if self.max_items is not None:
            schema["maxItems"] = self.max_items
        return schema


@dataclass(frozen=True, slots=True)
class PropertyNode:
    name: str
    node: ConstraintNode
    description: str | None = None
    optional: bool = True


@dataclass(frozen=True, slots=True)
class ObjectNode:
    name: str
    properties: tuple[PropertyNode, ...] = ()
    kind: Literal["object"] = "object"

    def property(self, name: str) -> PropertyNode | None:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def to_json_schema(self) -> dict[str, Any]:
        properties: dict[str, Any] = {}
        for prop in self.properties:
            rendered = prop.node.to_json_schema()
            if prop.description:
                rendered = {**rendered, "description": prop.description}
            properties[prop.name] = rendered
        schema: dict[str, Any] = {
            "type": "object",
            "properties": properties,
            "additionalProperties": False,
        }
        required = [prop.name for prop in self.properties if not prop.optional]
        if required:
            schema["required"] = required
        return schema


@dataclass(frozen=True, slots=True)
class EnumNode:
    name: str
    values: tuple[str, ...] = ()
    kind: Literal["enum"] = "enum"

    def to_json_schema(self) -> dict[str, Any]:
        return {"type": "string", "enum": list(self.values)}


@dataclass(frozen=True, slots=True)
class UnionNode:
    name: str
    variants: tuple[ConstraintNode, ...] = ()
    kind: Literal["union"] = "union"

    def to_json_schema(self) -> dict[str, Any]:
        return {"anyOf": [variant.to_json_schema() for variant in self.variants]}


@dataclass(frozen=True, slots=True)
class ReferenceNode:
    name: str
    kind: Literal["reference"] = "reference"

    def to_json_schema(self) -> dict[str, Any]:
        return {"$ref": f"#/$defs/{self.name}"}


ConstraintNode = (
    StringNode
    | NumberNode
    | IntegerNode
    | BooleanNode
    | LiteralNode
    | ArrayNode
    | ObjectNode
    | EnumNode
    | UnionNode
    | ReferenceNode
)


@dataclass(frozen=True)
class CompiledSchema:
    """Root node plus the named nodes it references."""

    root: ConstraintNode
    dependencies: dict[str, ConstraintNode] = field(default_factory=dict)

    @property
    def name(self) -> str:
        return getattr(self.root, "name", None) or "response"

    def resolve(self, name: str) -> ConstraintNode:
        try:
            return self.dependencies[name]
        except KeyError:
            raise InvalidSchema(f"unresolved reference: {name}") from None

    def to_json_schema(self) -> dict[str, Any]:
        schema = dict(self.root.to_json_schema())
        if self.dependencies:
            schema["$defs"] = {
                name: node.to_json_schema() for name, node in self.dependencies.items()
            }
        return schema


def _enum_value(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _non_negative_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def _primary_type(value: Any) -> Any:
    if isinstance(value, list):
        for entry in value:
            if entry != "null":
                return entry
        return None
    return value


def _is_null_branch(branch: Any) -> bool:
    return isinstance(branch, dict) and branch.get("type") == "null" and len(branch) == 1


def _single_enum_value(branch: Any) -> tuple[bool, str]:
    if not isinstance(branch, dict):
        return False, ""
    enum = branch.get("enum")
    if isinstance(enum, list) and len(enum) == 1:
        return True, _enum_value(enum[0])
    if "const" in branch and "enum" not in branch:
        return True, _enum_value(branch["const"])
    return False, ""


class _SchemaCompiler:
    """Single-use compiler; holds the name registry for one compile call."""

    def __init__(self, document: Mapping[str, Any]) -> None:
        self._document = document
        self._definitions = self._collect_definitions(document)
        self._used_names: set[str] = set(self._definitions)
        self._counter = 0

    @staticmethod
    def _collect_definitions(document: Mapping[str, Any]) -> dict[str, Any]:
        definitions: dict[str, Any] = {}
        for key in ("definitions", "$defs"):
            block = document.get(key)
            if isinstance(block, dict):
                for name, definition in block.items():
                    definitions.setdefault(str(name), definition)
        return definitions

    def compile(self) -> CompiledSchema:
        dependencies: dict[str, ConstraintNode] = {}
        for name, definition in self._definitions.items():
            dependencies[name] = self._compile(definition, name=name)

        if "$ref" in self._document:
            root: ConstraintNode = ReferenceNode(self._reference_name(self._document["$ref"]))
        else:
            root = self._compile(self._document, hint="Root")
        return CompiledSchema(root=root, dependencies=dependencies)

    def _claim_name(self, schema: Mapping[str, Any], hint: str | None, kind: str) -> str:
        title = schema.get("title")
        if isinstance(title, str) and title.strip():
            base = title.strip()
        elif hint:
            base = hint
        else:
            self._counter += 1
            base = f"{kind}{self._counter}"

        candidate = base
        suffix = 2
        while candidate in self._used_names:
            candidate = f"{base}_{suffix}"
            suffix += 1
        self._used_names.add(candidate)
        return candidate

    def _reference_name(self, ref: Any) -> str:
        if not isinstance(ref, str):
            raise InvalidSchema("$ref must be a string", {"ref": repr(ref)})
        for prefix in DEFINITION_PREFIXES:
            if ref.startswith(prefix):
                name = ref[len(prefix):]
                if not name or "/" in name:
                    break
                if name not in self._definitions:
                    raise InvalidSchema(f"unresolved reference: {ref}", {"ref": ref})
                return name
        raise InvalidSchema(f"$ref must point into #/definitions/: {ref}", {"ref": ref})

    def _compile(
        self,
        schema: Any,
        *,
        name: str | None = None,
        hint: str | None = None,
    ) -> ConstraintNode:
        if not isinstance(schema, dict):
            logger.debug(f"non-object schema fragment degraded to string: {schema!r}")
            return StringNode()

        if "$ref" in schema:
            return ReferenceNode(self._reference_name(schema["$ref"]))

        any_of = schema.get("anyOf")
        if isinstance(any_of, list) and any_of:
            return self._compile_any_of(any_of, schema, name=name, hint=hint)

        enum = schema.get("enum")
        if isinstance(enum, list) and enum:
            return EnumNode(
                name=name or self._claim_name(schema, hint, "Enum"),
                values=tuple(_enum_value(v) for v in enum),
            )
        if "const" in schema:
            return EnumNode(
                name=name or self._claim_name(schema, hint, "Enum"),
                values=(_enum_value(schema["const"]),),
            )

        type_ = _primary_type(schema.get("type"))
        if type_ == "string":
            return StringNode()
        if type_ == "number":
            return NumberNode()
        if type_ == "integer":
            return IntegerNode()
        if type_ == "boolean":
            return BooleanNode()
        if type_ == "array":
            items = schema.get("items")
            element_hint = f"{name or hint}.items" if (name or hint) else None
            element = (
                self._compile(items, hint=element_hint)
                if isinstance(items, dict)
                else StringNode()
            )
            return ArrayNode(
                element=element,
                min_items=_non_negative_int(schema.get("minItems")),
                max_items=_non_negative_int(schema.get("maxItems")),
            )
        if type_ == "object" or (type_ is None and isinstance(schema.get("properties"), dict)):
            return self._compile_object(schema, name=name, hint=hint)

        if type_ is not None:
            logger.warning(f"unsupported schema type {type_!r}, falling back to string")
        return StringNode()

    def _compile_object(
        self,
        schema: Mapping[str, Any],
        *,
        name: str | None,
        hint: str | None,
    ) -> ObjectNode:
        object_name = name or self._claim_name(schema, hint, "Object")
        raw_properties = schema.get("properties")
        if not isinstance(raw_properties, dict):
            raw_properties = {}
        raw_required = schema.get("required")
        required = (
            {r for r in raw_required if isinstance(r, str)}
            if isinstance(raw_required, list)
            else set()
        )

        properties: list[PropertyNode] = []
        for key, sub_schema in raw_properties.items():
            description = sub_schema.get("description") if isinstance(sub_schema, dict) else None
            properties.append(
                PropertyNode(
                    name=str(key),
                    node=self._compile(sub_schema, hint=f"{object_name}.{key}"),
                    description=description if isinstance(description, str) else None,
                    optional=key not in required,
                )
            )
        return ObjectNode(name=object_name, properties=tuple(properties))

    def _compile_any_of(
        self,
        branches: list[Any],
        schema: Mapping[str, Any],
        *,
        name: str | None,
        hint: str | None,
    ) -> ConstraintNode:
        # Optional[X] style unions: the null branch carries no constraint of its own.
        non_null = [b for b in branches if not _is_null_branch(b)]
        if not non_null:
            return StringNode()
        if len(non_null) == 1 and len(branches) > 1 and not _single_enum_value(non_null[0])[0]:
            return self._compile(non_null[0], name=name, hint=hint)
        branches = non_null

        singles = [_single_enum_value(b) for b in branches]
        union_name = name or self._claim_name(
            schema, hint, "Enum" if all(ok for ok, _ in singles) else "Union"
        )
        if all(ok for ok, _ in singles):
            return EnumNode(name=union_name, values=tuple(value for _, value in singles))

        variants: list[ConstraintNode] = []
        for index, (branch, (is_single, value)) in enumerate(zip(branches, singles)):
            if is_single:
                variants.append(LiteralNode(value))
            else:
                variants.append(self._compile(branch, hint=f"{union_name}.{index}"))
        return UnionNode(name=union_name, variants=tuple(variants))


def compile_schema(document: Mapping[str, Any] | type[BaseModel]) -> CompiledSchema:
    """Compile a JSON-Schema document (or a pydantic model class).

    Raises:
        InvalidSchema: the document is not a JSON object, or a `$ref` cannot be
            resolved inside its definitions.
    """
    if isinstance(document, type) and issubclass(document, BaseModel):
        document = document.model_json_schema()
    if not isinstance(document, dict):
        raise InvalidSchema(
            "schema document must be a JSON object", {"type": type(document).__name__}
        )

    compiled = _SchemaCompiler(document).compile()
    logger.debug(
        f"compiled schema root={compiled.root.kind} dependencies={list(compiled.dependencies)}"
    )
    return compiled


__all__ = [
    "ArrayNode",
    "BooleanNode",
    "CompiledSchema",
    "ConstraintNode",
    "EnumNode",
    "IntegerNode",
    "LiteralNode",
    "NumberNode",
    "ObjectNode",
    "PropertyNode",
    "ReferenceNode",
    "StringNode",
    "UnionNode",
    "compile_schema",
]
