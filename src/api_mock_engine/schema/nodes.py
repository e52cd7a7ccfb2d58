"""Normalized schema nodes.

The resolver turns raw (dict) schema declarations into one of these closed
variants; everything downstream dispatches on the concrete class. ``kind``
is the discriminator so nested nodes round-trip through ``model_dump``.
"""

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field


class SchemaNode(BaseModel):
    """Fields shared by every variant."""

    enum: list | None = None
    has_const: bool = False  # const may legitimately be null
    const: Any = None
    nullable: bool = False
    placeholder: bool = False  # substituted for a broken or cyclic reference

    def to_json_schema(self, constraints: bool = True) -> dict:
        """Render back to plain JSON Schema (no references left).

        With ``constraints=False`` only type, required, properties, items and
        composition survive; that is the shape used for request validation.
        """
        if self.placeholder and not constraints:
            return {}
        out: dict = {}
        if constraints:
            if self.enum is not None:
                out["enum"] = list(self.enum)
            if self.has_const:
                out["const"] = self.const
        self._render(out, constraints)
        if self.nullable and "type" in out:
            out["type"] = [out["type"], "null"]
        return out

    def _render(self, out: dict, constraints: bool) -> None:
        raise NotImplementedError


class ObjectSchema(SchemaNode):
    kind: Literal["object"] = "object"
    properties: dict[str, "AnySchema"] = {}
    required: list[str] = []
    min_properties: int | None = None
    max_properties: int | None = None

    def _render(self, out: dict, constraints: bool) -> None:
        out["type"] = "object"
        if self.properties:
            out["properties"] = {
                name: node.to_json_schema(constraints) for name, node in self.properties.items()
            }
        if self.required:
            out["required"] = list(self.required)
        if constraints:
            if self.min_properties is not None:
                out["minProperties"] = self.min_properties
            if self.max_properties is not None:
                out["maxProperties"] = self.max_properties


class ArraySchema(SchemaNode):
    kind: Literal["array"] = "array"
    items: "AnySchema | None" = None
    min_items: int | None = None
    max_items: int | None = None
    unique_items: bool = False

    def _render(self, out: dict, constraints: bool) -> None:
        out["type"] = "array"
        if self.items is not None:
            out["items"] = self.items.to_json_schema(constraints)
        if constraints:
            if self.min_items is not None:
                out["minItems"] = self.min_items
            if self.max_items is not None:
                out["maxItems"] = self.max_items
            if self.unique_items:
                out["uniqueItems"] = True


class StringSchema(SchemaNode):
    kind: Literal["string"] = "string"
    format: str | None = None
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None

    def _render(self, out: dict, constraints: bool) -> None:
        out["type"] = "string"
        if constraints:
            if self.format:
                out["format"] = self.format
            if self.min_length is not None:
                out["minLength"] = self.min_length
            if self.max_length is not None:
                out["maxLength"] = self.max_length
            if self.pattern:
                out["pattern"] = self.pattern


class _NumericSchema(SchemaNode):
    format: str | None = None
    minimum: int | float | None = None
    maximum: int | float | None = None
    exclusive_minimum: bool = False
    exclusive_maximum: bool = False
    multiple_of: int | float | None = None

    def _render(self, out: dict, constraints: bool) -> None:
        out["type"] = self.kind
        if not constraints:
            return
        if self.minimum is not None:
            out["exclusiveMinimum" if self.exclusive_minimum else "minimum"] = self.minimum
        if self.maximum is not None:
            out["exclusiveMaximum" if self.exclusive_maximum else "maximum"] = self.maximum
        if self.multiple_of is not None:
            out["multipleOf"] = self.multiple_of


class NumberSchema(_NumericSchema):
    kind: Literal["number"] = "number"


class IntegerSchema(_NumericSchema):
    kind: Literal["integer"] = "integer"


class BooleanSchema(SchemaNode):
    kind: Literal["boolean"] = "boolean"

    def _render(self, out: dict, constraints: bool) -> None:
        out["type"] = "boolean"


class ChoiceSchema(SchemaNode):
    """oneOf/anyOf: the pick happens at generation time, not here."""

    kind: Literal["choice"] = "choice"
    combinator: Literal["oneOf", "anyOf"] = "oneOf"
    options: list["AnySchema"] = []

    def _render(self, out: dict, constraints: bool) -> None:
        # anyOf even for oneOf: overlapping variants must not reject a valid body
        out["anyOf"] = [option.to_json_schema(constraints) for option in self.options]


AnySchema = Annotated[
    Union[ObjectSchema, ArraySchema, StringSchema, NumberSchema, IntegerSchema, BooleanSchema, ChoiceSchema],
    Field(discriminator="kind"),
]

ObjectSchema.model_rebuild()
ArraySchema.model_rebuild()
ChoiceSchema.model_rebuild()


def placeholder_schema() -> ObjectSchema:
    """The generic ``{type: object}`` node used when resolution fails."""
    return ObjectSchema(placeholder=True)
