"""Test-data scenarios: realistic, boundary, and minimal variants of a schema."""

import logging
from typing import Any

from pydantic import BaseModel

from api_mock_engine.schema.nodes import (
    ArraySchema,
    BooleanSchema,
    ChoiceSchema,
    IntegerSchema,
    NumberSchema,
    ObjectSchema,
    SchemaNode,
    StringSchema,
)

from .synthesizer import ValueSynthesizer

logger = logging.getLogger(__name__)

DESCRIPTIONS = {
    "realistic": "Realistic data with typical values",
    "edge_case": "Edge cases with boundary and special values",
    "minimal": "Minimal valid data with only required fields",
    "varied": "Varied realistic data for testing diversity",
    "fallback": "Simple fallback data due to generation issues",
}
EDGE_STRINGS = ["", "a", "A" * 255, "特殊字符", "🚀🎉", "null", "undefined"]
EDGE_NUMBERS = [0, -1, 1, 999999, -999999]


class Scenario(BaseModel):
    id: int
    name: str
    description: str
    type: str
    data: Any = None


def generate_scenarios(node: SchemaNode, synthesizer: ValueSynthesizer, count: int = 5) -> list[Scenario]:
    """Build ``count`` scenarios; one that fails becomes a fallback scenario."""
    scenarios = []
    for i in range(count):
        kind = ("realistic", "edge_case", "minimal")[i] if i < 3 else "varied"
        try:
            if kind == "edge_case":
                data = edge_case_value(node, synthesizer)
            elif kind == "minimal":
                data = minimal_value(node)
            else:
                data = synthesizer.synthesize(node)
        except Exception as e:
            logger.warning("Scenario %d (%s) failed, using fallback: %s", i + 1, kind, e)
            kind = "fallback"
            data = synthesizer.generic_record()
        scenarios.append(
            Scenario(id=i + 1, name=f"Scenario {i + 1}", description=DESCRIPTIONS[kind], type=kind, data=data)
        )
    return scenarios


def edge_case_value(node: SchemaNode, synthesizer: ValueSynthesizer):
    """A realistic value whose scalar properties are pushed to their edges."""
    value = synthesizer.synthesize(node)
    if not isinstance(node, ObjectSchema) or not isinstance(value, dict):
        return value
    for name in value:
        prop = node.properties.get(name)
        if isinstance(prop, StringSchema) and not prop.enum and not prop.has_const:
            value[name] = synthesizer.random.choice(_string_edges(prop))
        elif isinstance(prop, (IntegerSchema, NumberSchema)) and not prop.enum and not prop.has_const:
            value[name] = synthesizer.random.choice(_number_edges(prop))
    return value


def _string_edges(node: StringSchema) -> list[str]:
    if node.min_length is None and node.max_length is None:
        return EDGE_STRINGS
    edges = ["a" * (node.min_length or 0)]
    if node.max_length is not None:
        edges.append("A" * node.max_length)
    return edges


def _number_edges(node: IntegerSchema | NumberSchema) -> list:
    if node.minimum is None and node.maximum is None:
        return EDGE_NUMBERS
    unit = 1 if isinstance(node, IntegerSchema) else 0.01
    edges = []
    if node.minimum is not None:
        edges.append(node.minimum + unit if node.exclusive_minimum else node.minimum)
    if node.maximum is not None:
        edges.append(node.maximum - unit if node.exclusive_maximum else node.maximum)
    return edges


def minimal_value(node: SchemaNode):
    """Smallest value that still satisfies the declared constraints."""
    if node.has_const:
        return node.const
    if node.enum:
        return node.enum[0]
    if isinstance(node, ChoiceSchema):
        return minimal_value(node.options[0]) if node.options else {}
    if isinstance(node, ObjectSchema):
        return {
            name: minimal_value(node.properties.get(name) or StringSchema())
            for name in node.required
        }
    if isinstance(node, ArraySchema):
        return [minimal_value(node.items or StringSchema()) for _ in range(node.min_items or 0)]
    if isinstance(node, StringSchema):
        return "a" * node.min_length if node.min_length else "test"
    if isinstance(node, (IntegerSchema, NumberSchema)):
        if node.minimum is None:
            return 1 if node.maximum is None or node.maximum >= 1 else node.maximum
        unit = 1 if isinstance(node, IntegerSchema) else 0.01
        return node.minimum + unit if node.exclusive_minimum else node.minimum
    if isinstance(node, BooleanSchema):
        return False
    return None
