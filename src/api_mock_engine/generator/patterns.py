"""Pattern Registry: property-name heuristics for realistic values.

Rules are ``(predicate, generator)`` pairs. Predicates receive the property
name lowercased; generators receive the Faker instance and the original
property name. Lookup order: registered rules in registration order, then
the built-in rules below. The first rule whose value fits the schema wins.
"""

import string
from dataclasses import dataclass
from datetime import timezone
from typing import Any, Callable

from faker import Faker

Predicate = Callable[[str], bool]
Generator = Callable[[Faker, str], Any]

STRING = frozenset({"string"})
INTEGER = frozenset({"integer"})
NUMERIC = frozenset({"integer", "number"})

STATUSES = ["active", "inactive", "pending", "completed", "draft", "published", "archived"]
PRIORITIES = ["low", "medium", "high", "urgent"]
DEPARTMENTS = ["Electronics", "Books", "Clothing", "Home", "Garden", "Toys", "Sports", "Beauty", "Grocery", "Health"]
LANGUAGES = ["JavaScript", "Python", "Java", "C++", "Go", "Rust"]
PRODUCT_NOUNS = ["Chair", "Table", "Shirt", "Shoes", "Keyboard", "Lamp", "Watch", "Bottle", "Backpack", "Gloves"]


@dataclass(frozen=True)
class PatternRule:
    predicate: Predicate
    generator: Generator
    kinds: frozenset | None = None  # None applies to every schema kind

    def applies(self, name: str, kind: str) -> bool:
        if self.kinds is not None and kind not in self.kinds:
            return False
        return bool(self.predicate(name))


def contains(*words: str) -> Predicate:
    return lambda name: any(w in name for w in words)


def equals(*names: str) -> Predicate:
    return lambda name: name in names


NOT_IDENTIFIERS = frozenset({"paid", "valid", "invalid", "android", "rapid", "liquid", "fluid", "hybrid", "humid"})


def is_identifier(name: str) -> bool:
    return name == "id" or name.endswith("_id") or (name.endswith("id") and name not in NOT_IDENTIFIERS)


def _iso(dt) -> str:
    return dt.replace(tzinfo=timezone.utc).isoformat()


def _product_name(fake: Faker, name: str) -> str:
    return f"{fake.color_name()} {fake.random_element(PRODUCT_NOUNS)}"


def _secret(fake: Faker, name: str) -> str:
    return fake.lexify("?" * 32, letters=string.ascii_letters + string.digits)


def _url(fake: Faker, name: str) -> str:
    lowered = name.lower()
    if any(w in lowered for w in ("photo", "image", "avatar", "picture")):
        return fake.image_url(width=400, height=300)
    if "video" in lowered:
        return f"{fake.url()}video/{fake.file_name(extension='mp4')}"
    if "api" in lowered or "endpoint" in lowered:
        return f"{fake.url()}api/v1/{fake.word()}"
    return fake.url()


def _person_name(fake: Faker, name: str) -> str:
    lowered = name.lower()
    if "first" in lowered or "given" in lowered:
        return fake.first_name()
    if "last" in lowered or "family" in lowered or "surname" in lowered:
        return fake.last_name()
    if any(w in lowered for w in ("company", "organization", "organisation", "business")):
        return fake.company()
    if "product" in lowered or "item" in lowered:
        return _product_name(fake, name)
    if "file" in lowered:
        return fake.file_name()
    if "category" in lowered:
        return fake.random_element(DEPARTMENTS)
    if "tag" in lowered:
        return fake.word()
    if lowered == "name":
        return fake.first_name()
    if any(w in lowered for w in ("full", "user", "person", "author", "display")):
        return fake.name()
    return " ".join(fake.words(2)).title()


def _date_string(fake: Faker, name: str) -> str:
    lowered = name.lower()
    if "birth" in lowered or "born" in lowered:
        return fake.date_of_birth(minimum_age=18, maximum_age=90).isoformat()
    if "created" in lowered or "start" in lowered:
        return _iso(fake.past_datetime(start_date="-365d"))
    if "updated" in lowered or "modified" in lowered:
        return _iso(fake.date_time_between(start_date="-30d", end_date="now"))
    if any(w in lowered for w in ("future", "end", "expire", "due")):
        return _iso(fake.future_datetime(end_date="+365d"))
    return _iso(fake.date_time_between(start_date="-30d", end_date="now"))


BUILTIN_RULES: list[PatternRule] = [
    # identifiers
    PatternRule(contains("uuid", "guid"), lambda f, n: f.uuid4(), STRING),
    PatternRule(is_identifier, lambda f, n: f.random_int(min=1, max=100000), INTEGER),
    PatternRule(is_identifier, lambda f, n: f.uuid4(), STRING),
    # contact and network
    PatternRule(contains("url", "link", "uri", "href", "website", "homepage"), _url, STRING),
    PatternRule(contains("email"), lambda f, n: f.email(), STRING),
    PatternRule(contains("phone", "mobile", "fax"), lambda f, n: f.phone_number(), STRING),
    PatternRule(equals("tel", "telephone"), lambda f, n: f.phone_number(), STRING),
    PatternRule(equals("ip", "ipaddress", "ip_address", "ipv4"), lambda f, n: f.ipv4(), STRING),
    PatternRule(equals("mac", "macaddress", "mac_address"), lambda f, n: f.mac_address(), STRING),
    PatternRule(contains("hostname", "domain"), lambda f, n: f.domain_name(), STRING),
    PatternRule(contains("username", "handle", "login"), lambda f, n: f.user_name(), STRING),
    PatternRule(contains("useragent", "user_agent"), lambda f, n: f.user_agent(), STRING),
    # location
    PatternRule(contains("address", "street"), lambda f, n: f.street_address(), STRING),
    PatternRule(contains("city"), lambda f, n: f.city(), STRING),
    PatternRule(contains("country"), lambda f, n: f.country(), STRING),
    PatternRule(contains("zip", "postal", "postcode"), lambda f, n: f.postcode(), STRING),
    PatternRule(contains("timezone"), lambda f, n: f.timezone(), STRING),
    PatternRule(contains("latitude"), lambda f, n: float(f.latitude()), NUMERIC),
    PatternRule(contains("longitude"), lambda f, n: float(f.longitude()), NUMERIC),
    # names and labels
    PatternRule(contains("name"), _person_name, STRING),
    PatternRule(contains("status"), lambda f, n: f.random_element(STATUSES), STRING),
    PatternRule(contains("state", "province", "region"), lambda f, n: f.state(), STRING),
    PatternRule(contains("priority"), lambda f, n: f.random_element(PRIORITIES), STRING),
    PatternRule(contains("category", "department"), lambda f, n: f.random_element(DEPARTMENTS), STRING),
    PatternRule(contains("tag", "keyword"), lambda f, n: f.word(), STRING),
    PatternRule(contains("description", "summary", "content", "bio", "comment", "note"), lambda f, n: f.paragraph(), STRING),
    PatternRule(contains("title", "heading", "subject", "headline"), lambda f, n: f.sentence(), STRING),
    PatternRule(contains("job", "occupation"), lambda f, n: f.job(), STRING),
    PatternRule(contains("currency"), lambda f, n: f.currency_code(), STRING),
    PatternRule(contains("language"), lambda f, n: f.random_element(LANGUAGES), STRING),
    PatternRule(contains("color", "colour"), lambda f, n: f.color_name(), STRING),
    PatternRule(contains("mime"), lambda f, n: f.mime_type(), STRING),
    PatternRule(contains("file", "document"), lambda f, n: f.file_name(), STRING),
    PatternRule(contains("slug"), lambda f, n: f.slug(), STRING),
    PatternRule(contains("password"), lambda f, n: f.password(length=16), STRING),
    PatternRule(contains("token", "secret", "apikey", "api_key"), _secret, STRING),
    PatternRule(contains("date", "time", "birth", "created", "updated", "modified", "expire"), _date_string, STRING),
    # numbers
    PatternRule(contains("price", "cost", "amount", "fee", "salary", "balance"),
                lambda f, n: round(f.random.uniform(10, 1000), 2), frozenset({"number"})),
    PatternRule(contains("price", "cost", "amount", "fee", "salary", "balance"),
                lambda f, n: f.random_int(min=10, max=1000), INTEGER),
    PatternRule(contains("rating", "score", "stars"), lambda f, n: round(f.random.uniform(1, 5), 1), frozenset({"number"})),
    PatternRule(contains("rating", "score", "stars"), lambda f, n: f.random_int(min=1, max=5), INTEGER),
    PatternRule(equals("age"), lambda f, n: f.random_int(min=18, max=80), NUMERIC),
    PatternRule(contains("percent"), lambda f, n: round(f.random.uniform(0, 100), 1), NUMERIC),
    PatternRule(contains("count", "quantity", "qty", "total", "stock"), lambda f, n: f.random_int(min=1, max=100), NUMERIC),
    PatternRule(equals("port"), lambda f, n: f.random_int(min=1000, max=65535), NUMERIC),
    PatternRule(equals("year"), lambda f, n: int(f.year()), NUMERIC),
]


class PatternRegistry:
    """Ordered property-name rules: registered rules first, then built-ins."""

    def __init__(self, include_builtins: bool = True):
        self._registered: list[PatternRule] = []
        self._builtins = list(BUILTIN_RULES) if include_builtins else []

    def register(self, predicate: Predicate, generator: Generator, kinds=None) -> PatternRule:
        """Add a rule. Among registered rules the first registered wins."""
        rule = PatternRule(predicate, generator, frozenset(kinds) if kinds is not None else None)
        self._registered.append(rule)
        return rule

    def rules(self) -> list[PatternRule]:
        return self._registered + self._builtins

    def matching(self, name: str, kind: str) -> list[PatternRule]:
        """Rules that apply to ``name`` (case-insensitive) for a schema kind."""
        lowered = name.lower()
        return [rule for rule in self.rules() if rule.applies(lowered, kind)]

    def __len__(self) -> int:
        return len(self._registered) + len(self._builtins)


default_registry = PatternRegistry()


def register_pattern(predicate: Predicate, generator: Generator, kinds=None) -> PatternRule:
    """Register a rule on the default registry; call before serving starts."""
    return default_registry.register(predicate, generator, kinds)


PET_NAMES = ["Buddy", "Bella", "Cooper", "Lucy", "Max", "Luna", "Rocky", "Molly"]


def register_pet_patterns(registry: PatternRegistry) -> None:
    """Example domain extension for pet-store style APIs."""
    registry.register(equals("name"), lambda f, n: f.random_element(PET_NAMES), STRING)
    registry.register(equals("status"), lambda f, n: f.random_element(["available", "pending", "sold"]), STRING)
