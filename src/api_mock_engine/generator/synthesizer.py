"""Value Synthesizer: turns a normalized schema node into one concrete value.

Precedence for every node: const, enum, Pattern Registry (by property name),
then generic synthesis driven by type and format.
"""

import base64
import json
import logging
import math
import re
from datetime import datetime, timezone
from decimal import Decimal

from faker import Faker

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

from .patterns import PatternRegistry, default_registry

logger = logging.getLogger(__name__)

OPTIONAL_PROBABILITY = 0.7
DEFAULT_MIN_ITEMS = 1
DEFAULT_MAX_ITEMS = 3
UNIQUE_RETRIES = 5
DEFAULT_SPAN = 1000
ID_MAX = 100000

# Single character class + quantifier, optionally anchored: ^[0-9]{4}$, \d+, ^[A-Z]{2,3}$
SIMPLE_PATTERN = re.compile(
    r"^\^?(?P<cls>\\d|\[0-9\]|\[a-z\]|\[A-Z\]|\[a-zA-Z\]|\[A-Za-z\])"
    r"(?P<quant>\+|\*|\{\d+\}|\{\d+,\d*\})?\$?$"
)
PATTERN_CHARS = {
    r"\d": "0123456789",
    "[0-9]": "0123456789",
    "[a-z]": "abcdefghijklmnopqrstuvwxyz",
    "[A-Z]": "ABCDEFGHIJKLMNOPQRSTUVWXYZ",
    "[a-zA-Z]": "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ",
    "[A-Za-z]": "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ",
}


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _date_time(fake: Faker) -> str:
    return fake.date_time_between(start_date="-1y", end_date="now", tzinfo=timezone.utc).isoformat()


STRING_FORMATS = {
    "email": lambda f: f.email(),
    "idn-email": lambda f: f.email(),
    "uri": lambda f: f.url(),
    "url": lambda f: f.url(),
    "uri-reference": lambda f: f.uri_path(),
    "iri": lambda f: f.url(),
    "uuid": lambda f: f.uuid4(),
    "date": lambda f: f.date(),
    "date-time": _date_time,
    "time": lambda f: f.time(),
    "password": lambda f: f.password(length=16),
    "byte": lambda f: base64.b64encode(f.binary(length=12)).decode("ascii"),
    "binary": lambda f: f.binary(length=16).hex(),
    "hostname": lambda f: f.domain_name(),
    "ipv4": lambda f: f.ipv4(),
    "ipv6": lambda f: f.ipv6(),
    "phone": lambda f: f.phone_number(),
}


class _NoMatch:
    pass


NO_MATCH = _NoMatch()


class ValueSynthesizer:
    """Generates values for normalized schema nodes.

    All randomness flows through one Faker instance, so a seed makes a run
    reproducible.
    """

    def __init__(
        self,
        registry: PatternRegistry | None = None,
        faker: Faker | None = None,
        seed: int | None = None,
        optional_probability: float = OPTIONAL_PROBABILITY,
    ):
        self.fake = faker or Faker()
        if seed is not None:
            self.fake.seed_instance(seed)
        self.registry = registry if registry is not None else default_registry
        self.optional_probability = optional_probability

    @property
    def random(self):
        return self.fake.random

    def synthesize(self, node: SchemaNode | None, name: str | None = None):
        """Produce one value for ``node``; ``name`` is the originating property."""
        if node is None:
            return self.generic_record()
        if node.has_const:
            return node.const
        if node.enum:
            return self.random.choice(node.enum)
        if isinstance(node, ChoiceSchema):
            if not node.options:
                return {}
            return self.synthesize(self.random.choice(node.options), name)

        if name:
            value = self._from_patterns(node, name)
            if value is not NO_MATCH:
                return value

        if isinstance(node, ObjectSchema):
            return self._object(node)
        if isinstance(node, ArraySchema):
            return self._array(node, name)
        if isinstance(node, StringSchema):
            return self._string(node, name)
        if isinstance(node, (IntegerSchema, NumberSchema)):
            return self._number(node)
        if isinstance(node, BooleanSchema):
            return self.random.random() < 0.5
        raise TypeError(f"Unsupported schema node: {type(node).__name__}")

    def generic_record(self, label: str | None = None) -> dict:
        """The minimal record substituted when synthesis fails."""
        stamp = now_iso()
        return {
            "id": self.random.randint(1, ID_MAX),
            "name": f"Mock {label or 'Item'}",
            "status": "active",
            "createdAt": stamp,
            "updatedAt": stamp,
        }

    def identifier(self, node: SchemaNode | None):
        """A fresh id: UUID for string+uuid ids, a bounded integer otherwise."""
        if isinstance(node, StringSchema) and (node.format or "").lower() == "uuid":
            return self.fake.uuid4()
        if isinstance(node, IntegerSchema) and (node.minimum is not None or node.maximum is not None):
            return self._number(node)
        return self.random.randint(1, ID_MAX)

    # -- pattern registry -----------------------------------------------------

    def _from_patterns(self, node: SchemaNode, name: str):
        if isinstance(node, StringSchema) and (node.format or "").lower() in STRING_FORMATS:
            return NO_MATCH
        for rule in self.registry.matching(name, node.kind):
            value = rule.generator(self.fake, name)
            if value is not None and self._conforms(value, node):
                return value
        return NO_MATCH

    def _conforms(self, value, node: SchemaNode) -> bool:
        if isinstance(node, ObjectSchema):
            return isinstance(value, dict)
        if isinstance(node, ArraySchema):
            return isinstance(value, list)
        if isinstance(node, BooleanSchema):
            return isinstance(value, bool)
        if isinstance(node, StringSchema):
            if not isinstance(value, str):
                return False
            if node.min_length is not None and len(value) < node.min_length:
                return False
            if node.max_length is not None and len(value) > node.max_length:
                return False
            if node.pattern:
                try:
                    return re.search(node.pattern, value) is not None
                except re.error:
                    return True
            return True
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if isinstance(node, IntegerSchema) and not isinstance(value, int):
            return False
        return self._within_bounds(value, node)

    def _within_bounds(self, value, node) -> bool:
        if node.minimum is not None:
            if value < node.minimum or (node.exclusive_minimum and value == node.minimum):
                return False
        if node.maximum is not None:
            if value > node.maximum or (node.exclusive_maximum and value == node.maximum):
                return False
        if node.multiple_of:
            return Decimal(str(value)) % Decimal(str(node.multiple_of)) == 0
        return True

    # -- objects and arrays ---------------------------------------------------

    def _object(self, node: ObjectSchema) -> dict:
        if not node.properties and not node.required:
            if node.max_properties == 0:
                return {}
            record = self.generic_record()
            del record["createdAt"], record["updatedAt"]
            return record

        required = list(node.required)
        optional = [n for n in node.properties if n not in required]
        chosen = [n for n in optional if self.random.random() < self.optional_probability]

        remaining = [n for n in optional if n not in chosen]
        self.random.shuffle(remaining)
        if node.min_properties is not None:
            while len(required) + len(chosen) < node.min_properties and remaining:
                chosen.append(remaining.pop())
        if node.max_properties is not None:
            while len(required) + len(chosen) > node.max_properties and chosen:
                chosen.pop(self.random.randrange(len(chosen)))

        selected = set(required) | set(chosen)
        names = [n for n in node.properties if n in selected]
        names += [n for n in required if n not in node.properties]

        result = {}
        for prop in names:
            result[prop] = self.synthesize(node.properties.get(prop) or StringSchema(), prop)
        return result

    def _array(self, node: ArraySchema, name: str | None) -> list:
        items = node.items or StringSchema()
        low = node.min_items if node.min_items is not None else DEFAULT_MIN_ITEMS
        high = node.max_items if node.max_items is not None else DEFAULT_MAX_ITEMS
        if high < low:
            if node.max_items is None:
                high = low
            else:
                low = high
        count = self.random.randint(low, high)
        values = [self.synthesize(items, name) for _ in range(count)]
        if not node.unique_items:
            return values

        unique, seen = [], set()
        for value in values:
            key = _fingerprint(value)
            if key not in seen:
                seen.add(key)
                unique.append(value)

        retries = 0
        while len(unique) < low and retries < UNIQUE_RETRIES:
            value = self.synthesize(items, name)
            key = _fingerprint(value)
            if key in seen:
                retries += 1
                continue
            seen.add(key)
            unique.append(value)
        if len(unique) < low:
            logger.debug("uniqueItems: settled for %d of %d items", len(unique), low)
        return unique

    # -- scalars --------------------------------------------------------------

    def _string(self, node: StringSchema, name: str | None) -> str:
        fmt = (node.format or "").lower()
        if fmt in STRING_FORMATS:
            return STRING_FORMATS[fmt](self.fake)

        if node.pattern:
            value = self._from_regex(node)
            if value is not None:
                return value
            logger.debug("pattern %r is not enforced", node.pattern)

        text = " ".join(self.fake.words(self.random.randint(1, 3)))
        return _clamp(text, node.min_length, node.max_length)

    def _from_regex(self, node: StringSchema) -> str | None:
        """Honor the pure-digit / pure-alpha pattern idioms; None otherwise."""
        match = SIMPLE_PATTERN.match(node.pattern)
        if not match:
            return None
        chars = PATTERN_CHARS[match.group("cls")]
        quant = match.group("quant") or "{1}"
        if quant == "+":
            q_min, q_max = 1, None
        elif quant == "*":
            q_min, q_max = 0, None
        else:
            bounds = quant[1:-1].split(",")
            q_min = int(bounds[0])
            if len(bounds) == 1:
                q_max = q_min
            else:
                q_max = int(bounds[1]) if bounds[1] else None

        low = max(q_min, node.min_length or 0)
        high = q_max if q_max is not None else max(low, 1) + 9
        if node.max_length is not None:
            high = min(high, node.max_length)
        if high < low:
            return None
        length = self.random.randint(max(low, 1) if high >= 1 else 0, high)
        return "".join(self.random.choice(chars) for _ in range(length))

    def _number(self, node: IntegerSchema | NumberSchema):
        integer = isinstance(node, IntegerSchema)
        unit = 1 if integer else 0.01

        low, high = node.minimum, node.maximum
        if low is not None and node.exclusive_minimum:
            low = low + unit
        if high is not None and node.exclusive_maximum:
            high = high - unit
        if low is None:
            low = 1 if high is None or high >= 1 else high - DEFAULT_SPAN
        if high is None:
            high = max(low, 1) + DEFAULT_SPAN - 1

        if integer:
            low, high = math.ceil(low), math.floor(high)
            if low > high:
                logger.warning("Empty integer range [%s, %s], using lower bound", low, high)
                return low
            value = self.random.randint(low, high)
        else:
            if low > high:
                logger.warning("Empty number range [%s, %s], using lower bound", low, high)
                return low
            raw = self.random.uniform(low, high)
            value = round(raw, 2)
            if not low <= value <= high:
                value = raw

        if node.multiple_of:
            value = self._snap_to_multiple(value, low, high, node.multiple_of, integer)
        return value

    def _snap_to_multiple(self, value, low, high, multiple_of, integer: bool):
        step = Decimal(str(multiple_of))
        if step <= 0:
            return value
        if integer:
            # smallest integral multiple of the step, 2.5 -> 5
            step *= step.as_integer_ratio()[1]
        k_min = math.ceil(Decimal(str(low)) / step)
        k_max = math.floor(Decimal(str(high)) / step)
        if k_min > k_max:
            logger.warning("No multiple of %s within [%s, %s]", multiple_of, low, high)
            return value
        k = min(max(round(Decimal(str(value)) / step), k_min), k_max)
        snapped = k * step
        if integer:
            return int(snapped)
        return float(snapped)


def _clamp(text: str, min_length: int | None, max_length: int | None) -> str:
    if min_length is not None and len(text) < min_length:
        text = text.ljust(min_length, "x")
    if max_length is not None and len(text) > max_length:
        text = text[:max_length]
    return text


def _fingerprint(value) -> str:
    return json.dumps(value, sort_keys=True, default=str)
