"""Schema resolution: follow internal references and flatten composition.

``resolve`` never mutates its input and never raises for a bad reference;
a reference that is missing or points back into its own ancestry becomes
the generic placeholder node instead.
"""

import logging
from urllib.parse import unquote

from api_mock_engine.errors import ResolutionFailure

from .nodes import (
    ArraySchema,
    BooleanSchema,
    ChoiceSchema,
    IntegerSchema,
    NumberSchema,
    ObjectSchema,
    SchemaNode,
    StringSchema,
    placeholder_schema,
)

logger = logging.getLogger(__name__)

REF = "$ref"
KINDS = ("object", "array", "string", "number", "integer", "boolean")

# Keys that describe a schema without constraining it
ANNOTATION_KEYS = {"description", "title", "example", "examples", "externalDocs", "discriminator", "xml", "deprecated"}

# Internal key: references an allOf member was reached through, carried by
# the subschemas it contributes so a cycle back into that member is caught
ORIGIN = "x-resolved-via"

LOWER_BOUNDS = ("minLength", "minItems", "minProperties")
UPPER_BOUNDS = ("maxLength", "maxItems", "maxProperties")


def resolve(node, document: dict) -> SchemaNode:
    """Normalize a raw schema declaration against its owning document."""
    return _resolve(node, document or {}, frozenset())


def lookup_reference(document: dict, ref: str) -> dict:
    """Walk ``document`` by the segments of an internal ``#/...`` reference."""
    if not isinstance(ref, str) or not ref.startswith("#"):
        raise ResolutionFailure(str(ref), "only internal references are supported")

    current = document
    for raw_segment in ref[1:].split("/"):
        if raw_segment == "":
            continue
        segment = unquote(raw_segment).replace("~1", "/").replace("~0", "~")
        if isinstance(current, dict) and segment in current:
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit() and int(segment) < len(current):
            current = current[int(segment)]
        else:
            raise ResolutionFailure(ref, f"segment '{segment}' not found")

    if not isinstance(current, dict):
        raise ResolutionFailure(ref, "target is not a schema object")
    return current


def merge_all_of(members: list[dict]) -> dict:
    """Merge dereferenced allOf members into one raw schema.

    Properties and required are unioned; a property declared by several
    members is merged again. Bounds keep the more restrictive side. ``type``
    and every other keyword come from the first member that declares them.
    """
    merged: dict = {}
    properties: dict = {}
    required: list[str] = []
    lower = upper = None
    lengths: dict = {}

    for member in members:
        for name, prop in (member.get("properties") or {}).items():
            if name in properties:
                properties[name] = {"allOf": [properties[name], prop]}
            else:
                properties[name] = prop
        for name in member.get("required") or []:
            if name not in required:
                required.append(name)

        lower = _tighter(lower, _lower_bound(member), prefer_high=True)
        upper = _tighter(upper, _upper_bound(member), prefer_high=False)

        for key in LOWER_BOUNDS:
            if key in member:
                lengths[key] = max(lengths.get(key, member[key]), member[key])
        for key in UPPER_BOUNDS:
            if key in member:
                lengths[key] = min(lengths.get(key, member[key]), member[key])

        if "items" in member and "items" in merged:
            merged["items"] = {"allOf": [merged["items"], member["items"]]}
        if member.get("uniqueItems"):
            merged["uniqueItems"] = True

        for key, value in member.items():
            if key in ("properties", "required", "minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum"):
                continue
            if key in LOWER_BOUNDS or key in UPPER_BOUNDS:
                continue
            merged.setdefault(key, value)

    if properties:
        merged["properties"] = properties
    if required:
        merged["required"] = required
    merged.update(lengths)
    if lower is not None:
        merged["minimum"] = lower[0]
        if lower[1]:
            merged["exclusiveMinimum"] = True
    if upper is not None:
        merged["maximum"] = upper[0]
        if upper[1]:
            merged["exclusiveMaximum"] = True
    return merged


def _lower_bound(schema: dict) -> tuple | None:
    return _bound(schema, "minimum", "exclusiveMinimum", prefer_high=True)


def _upper_bound(schema: dict) -> tuple | None:
    return _bound(schema, "maximum", "exclusiveMaximum", prefer_high=False)


def _bound(schema: dict, inclusive_key: str, exclusive_key: str, prefer_high: bool) -> tuple | None:
    """Return ``(value, exclusive)`` for either the 3.0 or 3.1 keyword style."""
    exclusive = schema.get(exclusive_key)
    inclusive = schema.get(inclusive_key)
    if exclusive is None or isinstance(exclusive, bool):
        if inclusive is None:
            return None
        return (inclusive, exclusive is True)
    # 3.1: exclusiveMinimum/exclusiveMaximum carry the number themselves
    bound = (exclusive, True)
    if inclusive is not None:
        bound = _tighter(bound, (inclusive, False), prefer_high)
    return bound


def _tighter(current: tuple | None, candidate: tuple | None, prefer_high: bool) -> tuple | None:
    if current is None:
        return candidate
    if candidate is None:
        return current
    if current[0] == candidate[0]:
        return (current[0], current[1] or candidate[1])
    if prefer_high:
        return candidate if candidate[0] > current[0] else current
    return candidate if candidate[0] < current[0] else current


def _deref(node: dict, document: dict, seen: frozenset) -> tuple[dict, frozenset]:
    """Follow a chain of references; sibling keywords override the target."""
    while REF in node:
        ref = node[REF]
        if ref in seen:
            raise ResolutionFailure(ref, "reference cycle")
        seen = seen | {ref}
        target = lookup_reference(document, ref)
        siblings = {k: v for k, v in node.items() if k != REF}
        node = {**target, **siblings}
    return node, seen


def _flatten_all_of(node: dict, document: dict, seen: frozenset) -> list[tuple[dict, frozenset]]:
    """Dereferenced allOf members, each with the references that led to it."""
    members = []
    own = {k: v for k, v in node.items() if k != "allOf"}
    if own:
        members.append((own, seen))
    for member in node.get("allOf") or []:
        if not isinstance(member, dict):
            continue
        member, via = _split_origin(member, seen)
        member, via = _deref(member, document, via)
        if "allOf" in member:
            members.extend(_flatten_all_of(member, document, via))
        else:
            members.append((member, via))
    return members


def _tag_origin(schema, refs: frozenset):
    if not isinstance(schema, dict):
        return schema
    return {**schema, ORIGIN: refs | schema.get(ORIGIN, frozenset())}


def _split_origin(node: dict, seen: frozenset) -> tuple[dict, frozenset]:
    if ORIGIN not in node:
        return node, seen
    node = dict(node)
    return node, seen | node.pop(ORIGIN)


def _mark_origin(member: dict, via: frozenset, seen: frozenset) -> dict:
    """Stamp a member's subschemas with the references the member came through."""
    if via == seen:
        return member
    member = dict(member)
    if isinstance(member.get("properties"), dict):
        member["properties"] = {name: _tag_origin(prop, via) for name, prop in member["properties"].items()}
    if "items" in member:
        member["items"] = _tag_origin(member["items"], via)
    for combinator in ("oneOf", "anyOf"):
        if isinstance(member.get(combinator), list):
            member[combinator] = [_tag_origin(option, via) for option in member[combinator]]
    return member


def _resolve(node, document: dict, seen: frozenset) -> SchemaNode:
    if not isinstance(node, dict):
        return placeholder_schema()

    node, seen = _split_origin(node, seen)
    try:
        node, seen = _deref(node, document, seen)
        if "allOf" in node:
            members = _flatten_all_of(node, document, seen)
            node = merge_all_of([_mark_origin(member, via, seen) for member, via in members])
    except ResolutionFailure as e:
        logger.warning("Schema resolution failed, using placeholder: %s", e)
        return placeholder_schema()

    for combinator in ("oneOf", "anyOf"):
        if node.get(combinator):
            return _resolve_choice(node, combinator, document, seen)

    return _build(node, document, seen)


def _resolve_choice(node: dict, combinator: str, document: dict, seen: frozenset) -> SchemaNode:
    siblings = {k: v for k, v in node.items() if k not in ("oneOf", "anyOf")}
    constraining = {k: v for k, v in siblings.items() if k not in ANNOTATION_KEYS}
    options = []
    for option in node[combinator]:
        if constraining:
            option = {"allOf": [constraining, option]}
        options.append(_resolve(option, document, seen))
    return ChoiceSchema(combinator=combinator, options=options, nullable=bool(node.get("nullable")))


def _infer_kind(node: dict) -> tuple[str, bool]:
    declared = node.get("type")
    nullable = bool(node.get("nullable"))
    if isinstance(declared, list):
        nullable = nullable or "null" in declared
        declared = next((t for t in declared if t != "null"), None)
    if declared in KINDS:
        return declared, nullable

    if "properties" in node or "required" in node or "additionalProperties" in node:
        return "object", nullable
    if "items" in node:
        return "array", nullable

    if "const" in node:
        sample = node["const"]
    elif node.get("enum"):
        sample = node["enum"][0]
    else:
        sample = None
    if isinstance(sample, bool):
        return "boolean", nullable
    if isinstance(sample, int):
        return "integer", nullable
    if isinstance(sample, float):
        return "number", nullable
    if isinstance(sample, dict):
        return "object", nullable
    if isinstance(sample, list):
        return "array", nullable

    if any(key in node for key in ("minimum", "maximum", "exclusiveMinimum", "exclusiveMaximum", "multipleOf")):
        return "number", nullable
    return "string", nullable


def _build(node: dict, document: dict, seen: frozenset) -> SchemaNode:
    kind, nullable = _infer_kind(node)
    common = {
        "enum": list(node["enum"]) if isinstance(node.get("enum"), list) else None,
        "has_const": "const" in node,
        "const": node.get("const"),
        "nullable": nullable,
    }

    if kind == "object":
        return ObjectSchema(
            properties={
                name: _resolve(prop, document, seen)
                for name, prop in (node.get("properties") or {}).items()
            },
            required=list(node.get("required") or []),
            min_properties=node.get("minProperties"),
            max_properties=node.get("maxProperties"),
            **common,
        )

    if kind == "array":
        items = node.get("items")
        return ArraySchema(
            items=_resolve(items, document, seen) if isinstance(items, dict) else None,
            min_items=node.get("minItems"),
            max_items=node.get("maxItems"),
            unique_items=bool(node.get("uniqueItems")),
            **common,
        )

    if kind in ("number", "integer"):
        lower = _lower_bound(node)
        upper = _upper_bound(node)
        cls = IntegerSchema if kind == "integer" else NumberSchema
        return cls(
            format=node.get("format"),
            minimum=lower[0] if lower else None,
            exclusive_minimum=lower[1] if lower else False,
            maximum=upper[0] if upper else None,
            exclusive_maximum=upper[1] if upper else False,
            multiple_of=node.get("multipleOf"),
            **common,
        )

    if kind == "boolean":
        return BooleanSchema(**common)

    return StringSchema(
        format=node.get("format"),
        min_length=node.get("minLength"),
        max_length=node.get("maxLength"),
        pattern=node.get("pattern"),
        **common,
    )
