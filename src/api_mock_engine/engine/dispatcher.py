"""Mock Dispatcher: runs one request through match, validate, resolve, respond.

Create/Update/Delete are stateful: each one holds the collection key's lock
for its whole read-modify-write, so concurrent writers to the same resource
family are serialized while unrelated keys proceed in parallel.
"""

import asyncio
import logging
from typing import Any, Protocol

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError
from pydantic import BaseModel

from api_mock_engine.config import MockConfig
from api_mock_engine.errors import RequestValidationError, RouteNotFound, SynthesisFailure
from api_mock_engine.generator.synthesizer import ValueSynthesizer, now_iso
from api_mock_engine.parser.base import SpecDocument
from api_mock_engine.schema.nodes import ArraySchema, ObjectSchema, SchemaNode
from api_mock_engine.schema.resolver import resolve

from .matcher import RouteMatch, normalize_path
from .registry import SpecRegistry
from .store import ResourceStore, collection_key, same_id

logger = logging.getLogger(__name__)

CREATE_METHODS = ("POST",)
UPDATE_METHODS = ("PUT", "PATCH")
DELETE_METHODS = ("DELETE",)
NEW_ID_ATTEMPTS = 5


class MockRequest(BaseModel):
    method: str
    path: str
    query: dict[str, Any] = {}
    body: Any = None


class MockResponse(BaseModel):
    status_code: int
    body: Any = None
    metadata: dict = {}


class Augmenter(Protocol):
    def augment(self, schema: dict, context: dict) -> Any: ...


class _Call:
    """Everything derived from the request once the route is known."""

    def __init__(self, request: MockRequest, document: SpecDocument, route: RouteMatch, strategy: str):
        self.request = request
        self.method = request.method.upper()
        self.document = document
        self.route = route
        self.strategy = strategy
        self.path = normalize_path(request.path)
        self.collection_key = collection_key(self.path, route.ends_with_param)
        self.has_id = self.collection_key != self.path
        self.identifier = coerce_id(self.path.rsplit("/", 1)[-1]) if self.has_id else None
        self.body = request.body if isinstance(request.body, dict) else {}
        self.source = "synthesized"


def coerce_id(raw):
    if isinstance(raw, str) and raw.isdigit():
        return int(raw)
    return raw


def item_key(collection: str, identifier) -> str:
    return f"{collection.rstrip('/')}/{identifier}"


def filter_records(records: list, query: dict, declared=()) -> list:
    """Keep records whose fields match every query parameter.

    Parameters named in ``declared`` (paging, sorting and the like) only
    filter when some record carries a field of that name.
    """
    filters = {
        k: v for k, v in query.items()
        if k not in declared or any(isinstance(r, dict) and k in r for r in records)
    }
    if not filters:
        return records
    return [r for r in records if all(_field_matches(r, k, v) for k, v in filters.items())]


def _field_matches(record, key: str, expected) -> bool:
    if not isinstance(record, dict) or key not in record:
        return False
    value = record[key]
    expected = str(expected)
    if isinstance(value, str):
        return expected.lower() in value.lower()
    if isinstance(value, bool):
        return expected.lower() == str(value).lower()
    if isinstance(value, (int, float)):
        try:
            return float(expected) == value
        except ValueError:
            return False
    return str(value) == expected


def _without_required(schema):
    if isinstance(schema, dict):
        return {k: _without_required(v) for k, v in schema.items() if k != "required"}
    if isinstance(schema, list):
        return [_without_required(v) for v in schema]
    return schema


class MockDispatcher:
    """Turns request descriptors into response descriptors."""

    def __init__(
        self,
        specs: SpecRegistry,
        store: ResourceStore,
        synthesizer: ValueSynthesizer | None = None,
        augmenter: Augmenter | None = None,
        config: MockConfig | None = None,
    ):
        self.config = config or MockConfig()
        self.specs = specs
        self.store = store
        self.synthesizer = synthesizer or ValueSynthesizer(
            seed=self.config.seed,
            optional_probability=self.config.optional_property_probability,
        )
        self.augmenter = augmenter

    async def dispatch(self, request: MockRequest, strategy: str | None = None) -> MockResponse:
        if self.config.delay_ms:
            await asyncio.sleep(self.config.delay_ms / 1000)

        logger.info("Mock API request: %s %s", request.method.upper(), request.path)
        try:
            document, route = self.specs.match(request.method, request.path)
        except RouteNotFound as e:
            return MockResponse(
                status_code=404,
                body={
                    "error": "Mock endpoint not found",
                    "message": str(e),
                    "availableOperations": e.known_operations,
                },
            )

        call = _Call(request, document, route, strategy or self.config.strategy)
        try:
            if call.method in CREATE_METHODS + UPDATE_METHODS:
                self._validate(call)
            if call.method in CREATE_METHODS:
                status, body = await self._create(call)
            elif call.method in UPDATE_METHODS:
                status, body = await self._update(call)
            elif call.method in DELETE_METHODS:
                status, body = await self._delete(call)
            else:
                status, body = await self._read(call)
        except RequestValidationError as e:
            return MockResponse(
                status_code=400,
                body={"error": "Invalid request body", "violations": e.violations},
            )
        except SynthesisFailure as e:
            logger.error("Synthesis failed for %s: %s", route.operation.label, e)
            return self._error(call, e)
        except Exception as e:
            logger.exception("Mock API error for %s %s", call.method, call.path)
            return self._error(call, e)

        return MockResponse(status_code=status, body=body, metadata=self._metadata(call))

    # -- validation -----------------------------------------------------------

    def _validate(self, call: _Call) -> None:
        raw = call.route.operation.request_body
        if raw is None:
            return
        try:
            schema = resolve(raw, call.document.raw).to_json_schema(constraints=False)
            if call.method == "PATCH":
                schema = _without_required(schema)
            Draft7Validator.check_schema(schema)
            errors = list(Draft7Validator(schema).iter_errors(call.request.body))
        except (SchemaError, TypeError, ValueError) as e:
            logger.warning("Skipping validation for %s: %s", call.route.operation.label, e)
            return

        if errors:
            violations = [
                {"path": "/" + "/".join(str(p) for p in err.absolute_path), "message": err.message}
                for err in sorted(errors, key=lambda err: list(map(str, err.absolute_path)))
            ]
            raise RequestValidationError(violations)

    # -- synthesis ------------------------------------------------------------

    def _response_node(self, call: _Call, prefer: tuple[str, ...]) -> SchemaNode | None:
        raw = call.route.operation.success_schema(prefer)
        if raw is None:
            return None
        return resolve(raw, call.document.raw)

    async def _fresh_value(self, call: _Call, node: SchemaNode | None):
        if call.strategy == "augmented" and self.augmenter is not None and node is not None:
            value = await self._augmented(call, node)
            if value is not None:
                call.source = "augmented"
                return value

        try:
            return self.synthesizer.synthesize(node)
        except Exception as e:
            logger.warning("Synthesis failed for %s, using generic record: %s", call.route.operation.label, e)
        label = call.collection_key.rsplit("/", 1)[-1] or None
        try:
            return self.synthesizer.generic_record(label)
        except Exception as e:
            raise SynthesisFailure(f"fallback record failed: {e}") from e

    async def _augmented(self, call: _Call, node: SchemaNode):
        context = {"endpoint": call.path, "method": call.method}
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.augmenter.augment, node.to_json_schema(), context),
                timeout=self.config.augment_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Augmentation timed out after %ss, using patterns", self.config.augment_timeout)
        except Exception as e:
            logger.warning("Augmentation failed, using patterns: %s", e)
        return None

    def _new_id(self, node: SchemaNode | None, collection: str):
        id_node = node.properties.get("id") if isinstance(node, ObjectSchema) else None
        identifier = self.synthesizer.identifier(id_node)
        for _ in range(NEW_ID_ATTEMPTS):
            if not self.store.has(item_key(collection, identifier)):
                break
            identifier = self.synthesizer.identifier(id_node)
        return identifier

    # -- handlers -------------------------------------------------------------

    async def _create(self, call: _Call) -> tuple[int, Any]:
        node = self._response_node(call, ("201", "200"))
        base = await self._fresh_value(call, node) if node is not None else {}
        record = {**(base if isinstance(base, dict) else {}), **call.body}

        async with self.store.lock(call.collection_key):
            if call.body.get("id") is not None:
                identifier = call.body["id"]
            elif call.has_id:
                identifier = call.identifier
            else:
                identifier = self._new_id(node, call.collection_key)
            stamp = now_iso()
            record["id"] = identifier
            record["createdAt"] = stamp
            record["updatedAt"] = stamp

            await self.store.set(item_key(call.collection_key, identifier), record)
            if not await self.store.replace_in_collection(call.collection_key, identifier, record):
                await self.store.append_to_collection(call.collection_key, record)

        logger.info("Stored %s under %s", identifier, call.collection_key)
        return 201, record

    async def _update(self, call: _Call) -> tuple[int, Any]:
        node = self._response_node(call, ("200", "201"))
        fresh = await self._fresh_value(call, node) if node is not None else {}

        async with self.store.lock(call.collection_key):
            identifier = call.identifier if call.has_id else call.body.get("id")
            key = call.path if call.has_id else None
            if key is None and identifier is not None:
                key = item_key(call.collection_key, identifier)
            prior = self.store.get(key) if key else None

            if call.method == "PATCH" and isinstance(prior, dict):
                base = prior
                call.source = "stored"
            else:
                base = fresh if isinstance(fresh, dict) else {}
            record = {**base, **call.body}

            if identifier is None:
                identifier = record.get("id")
            if identifier is None:
                identifier = self._new_id(node, call.collection_key)
            if key is None:
                key = item_key(call.collection_key, identifier)
                prior = self.store.get(key)

            if isinstance(prior, dict) and "id" in prior:
                record["id"] = prior["id"]
            else:
                record["id"] = identifier
            now = now_iso()
            record["createdAt"] = prior.get("createdAt", now) if isinstance(prior, dict) else now
            record["updatedAt"] = now

            await self.store.set(key, record)
            await self.store.replace_in_collection(call.collection_key, record["id"], record)

        return 200, record

    async def _delete(self, call: _Call) -> tuple[int, Any]:
        async with self.store.lock(call.collection_key):
            if not await self.store.delete(call.path):
                return 404, {"error": "Not found", "message": f"No stored resource at {call.path}"}
            if call.has_id:
                await self.store.remove_from_collection(call.collection_key, call.identifier)
        call.source = "stored"
        return 204, None

    async def _read(self, call: _Call) -> tuple[int, Any]:
        if not call.has_id:
            return await self._read_collection(call)

        if self.store.is_deleted(call.path):
            return 404, {"error": "Not found", "message": f"{call.path} was deleted"}

        stored = self.store.get(call.path)
        if stored is None:
            collection = self.store.get_collection(call.collection_key) or []
            stored = next((item for item in collection if same_id(item, call.identifier)), None)
        if stored is not None:
            call.source = "stored"
            return 200, stored

        node = self._response_node(call, ("200", "201"))
        if node is None:
            return 200, {"message": f"Mock response for {call.method} {call.path}"}
        value = await self._fresh_value(call, node)
        if isinstance(value, dict):
            if "id" in value:
                value["id"] = call.identifier
            stamp = now_iso()
            value.setdefault("createdAt", stamp)
            value.setdefault("updatedAt", stamp)
            if self.config.persist_synthesized_reads:
                async with self.store.lock(call.collection_key):
                    if not self.store.has(call.path):
                        await self.store.set(call.path, value)
        return 200, value

    async def _read_collection(self, call: _Call) -> tuple[int, Any]:
        stored = self.store.get(call.path)
        if stored is not None:
            call.source = "stored"
            if isinstance(stored, list):
                declared = {p.name for p in call.route.operation.parameters if p.location == "query"}
                return 200, filter_records(stored, call.request.query, declared)
            return 200, stored

        node = self._response_node(call, ("200", "201"))
        if node is None or isinstance(node, ArraySchema):
            return 404, {"error": "Not found", "message": f"No stored data for {call.path}"}
        # a non-collection resource (e.g. /status) is still explorable
        return 200, await self._fresh_value(call, node)

    # -- responses ------------------------------------------------------------

    def _metadata(self, call: _Call) -> dict:
        if not self.config.enable_metadata:
            return {}
        operation = call.route.operation
        return {
            "operation": operation.label,
            "operationId": operation.operation_id,
            "spec": call.document.name,
            "source": call.source,
            "stateful": call.source == "stored",
            "timestamp": now_iso(),
        }

    def _error(self, call: _Call, error: Exception) -> MockResponse:
        return MockResponse(
            status_code=500,
            body={
                "error": "Mock API error",
                "message": str(error),
                "path": call.path,
                "method": call.method,
            },
            metadata=self._metadata(call),
        )
