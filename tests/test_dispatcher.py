import asyncio
import re
import time
from pathlib import Path
from unittest.mock import patch

import pytest

from api_mock_engine.config import MockConfig
from api_mock_engine.engine.dispatcher import MockDispatcher, MockRequest, filter_records
from api_mock_engine.engine.registry import SpecRegistry
from api_mock_engine.engine.storage import JsonFileStorage
from api_mock_engine.engine.store import ResourceStore
from api_mock_engine.parser.openapi import load_document

FIXTURES = Path(__file__).parent / "fixtures"
UUID = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$")


def _dispatcher(store=None, config=None, augmenter=None, spec="petstore.yaml"):
    doc = load_document(FIXTURES / spec)
    return MockDispatcher(
        SpecRegistry([doc]),
        store if store is not None else ResourceStore(),
        augmenter=augmenter,
        config=config or MockConfig(seed=11),
    )


async def _send(dispatcher, method, path, body=None, query=None, strategy=None):
    request = MockRequest(method=method, path=path, body=body, query=query or {})
    return await dispatcher.dispatch(request, strategy=strategy)


class StubAugmenter:
    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = []

    def augment(self, schema, context):
        self.calls.append((schema, context))
        if self.delay:
            time.sleep(self.delay)
        if self.error:
            raise self.error
        return self.result


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_then_read_collection(self):
        dispatcher = _dispatcher()
        created = await _send(dispatcher, "POST", "/pets", {"name": "X", "price": 9.99})

        assert created.status_code == 201
        assert created.body["name"] == "X"
        assert created.body["price"] == 9.99
        assert isinstance(created.body["id"], int)
        assert created.body["createdAt"] == created.body["updatedAt"]

        listed = await _send(dispatcher, "GET", "/pets")
        assert listed.status_code == 200
        assert created.body in listed.body

    @pytest.mark.asyncio
    async def test_create_then_read_item(self):
        dispatcher = _dispatcher()
        created = await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 1.5})
        read = await _send(dispatcher, "GET", f"/pets/{created.body['id']}")
        assert read.status_code == 200
        assert read.body == created.body
        assert read.metadata["source"] == "stored"
        assert read.metadata["stateful"] is True

    @pytest.mark.asyncio
    async def test_submitted_id_is_kept(self):
        dispatcher = _dispatcher()
        created = await _send(dispatcher, "POST", "/pets", {"id": 77, "name": "Rex", "price": 1.5})
        assert created.body["id"] == 77
        assert dispatcher.store.has("/pets/77")

    @pytest.mark.asyncio
    async def test_uuid_identifier(self):
        dispatcher = _dispatcher(spec="clinic.json")
        created = await _send(dispatcher, "POST", "/patients", {"firstName": "Ada", "lastName": "Lovelace"})
        assert created.status_code == 201
        assert UUID.match(created.body["id"])

        read = await _send(dispatcher, "GET", f"/patients/{created.body['id']}")
        assert read.body["firstName"] == "Ada"
        assert read.metadata["source"] == "stored"

    @pytest.mark.asyncio
    async def test_metadata(self):
        dispatcher = _dispatcher()
        created = await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 1.5})
        assert created.metadata["operation"] == "POST /pets"
        assert created.metadata["operationId"] == "createPet"
        assert created.metadata["spec"] == "petstore"
        assert "_mock" not in created.body

    @pytest.mark.asyncio
    async def test_metadata_disabled(self):
        dispatcher = _dispatcher(config=MockConfig(enable_metadata=False))
        created = await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 1.5})
        assert created.metadata == {}

    @pytest.mark.asyncio
    async def test_concurrent_creates_keep_every_record(self):
        dispatcher = _dispatcher()
        responses = await asyncio.gather(*(
            _send(dispatcher, "POST", "/pets", {"name": f"pet{i}", "price": 1.0}) for i in range(20)
        ))
        assert all(r.status_code == 201 for r in responses)

        listed = await _send(dispatcher, "GET", "/pets")
        assert len(listed.body) == 20
        assert len({p["id"] for p in listed.body}) == 20


class TestValidation:
    @pytest.mark.asyncio
    async def test_missing_and_mistyped_fields(self):
        dispatcher = _dispatcher()
        response = await _send(dispatcher, "POST", "/pets", {"price": "cheap"})
        assert response.status_code == 400
        assert response.body["error"] == "Invalid request body"
        violations = response.body["violations"]
        assert any("'name' is a required property" in v["message"] for v in violations)
        assert any(v["path"] == "/price" for v in violations)
        assert dispatcher.store.keys() == []

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        response = await _send(_dispatcher(), "POST", "/pets", ["Rex"])
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_enum_not_enforced(self):
        response = await _send(_dispatcher(), "POST", "/pets", {"name": "Rex", "price": 2, "category": "fish"})
        assert response.status_code == 201

    @pytest.mark.asyncio
    async def test_put_requires_fields(self):
        response = await _send(_dispatcher(), "PUT", "/pets/1", {"price": 3})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_patch_allows_partial_body(self):
        response = await _send(_dispatcher(), "PATCH", "/pets/1", {"price": 3})
        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unusable_schema_skips_validation(self):
        dispatcher = _dispatcher()
        with patch("api_mock_engine.engine.dispatcher.Draft7Validator.check_schema", side_effect=TypeError("bad")):
            response = await _send(dispatcher, "POST", "/pets", {"price": "cheap"})
        assert response.status_code == 201


class TestUpdate:
    @pytest.mark.asyncio
    async def test_patch_merges_and_keeps_created_at(self):
        dispatcher = _dispatcher()
        created = (await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 1.5})).body
        path = f"/pets/{created['id']}"

        updated = await _send(dispatcher, "PATCH", path, {"price": 3.25})
        assert updated.status_code == 200
        assert updated.body["name"] == "Rex"
        assert updated.body["price"] == 3.25
        assert updated.body["id"] == created["id"]
        assert updated.body["createdAt"] == created["createdAt"]

        assert (await _send(dispatcher, "GET", path)).body == updated.body
        listed = (await _send(dispatcher, "GET", "/pets")).body
        assert listed == [updated.body]

    @pytest.mark.asyncio
    async def test_put_replaces_submitted_fields(self):
        dispatcher = _dispatcher()
        created = (await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 1.5})).body
        path = f"/pets/{created['id']}"

        updated = await _send(dispatcher, "PUT", path, {"name": "Max", "price": 2.0})
        assert updated.body["name"] == "Max"
        assert updated.body["createdAt"] == created["createdAt"]

    @pytest.mark.asyncio
    async def test_put_on_unknown_item_creates_it(self):
        dispatcher = _dispatcher()
        updated = await _send(dispatcher, "PUT", "/pets/5", {"name": "Max", "price": 2.0})
        assert updated.status_code == 200
        assert updated.body["id"] == 5
        assert (await _send(dispatcher, "GET", "/pets/5")).body == updated.body


class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_then_read(self):
        dispatcher = _dispatcher()
        created = (await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 1.5})).body
        other = (await _send(dispatcher, "POST", "/pets", {"name": "Max", "price": 2.5})).body
        path = f"/pets/{created['id']}"

        deleted = await _send(dispatcher, "DELETE", path)
        assert deleted.status_code == 204
        assert deleted.body is None

        assert (await _send(dispatcher, "GET", path)).status_code == 404
        listed = (await _send(dispatcher, "GET", "/pets")).body
        assert [p["id"] for p in listed] == [other["id"]]

    @pytest.mark.asyncio
    async def test_delete_unknown(self):
        response = await _send(_dispatcher(), "DELETE", "/pets/999")
        assert response.status_code == 404


class TestRead:
    @pytest.mark.asyncio
    async def test_empty_collection_is_not_found(self):
        response = await _send(_dispatcher(), "GET", "/pets")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_exact_path_collection(self):
        response = await _send(_dispatcher(), "GET", "/pets/mine")
        assert response.status_code == 404
        assert response.metadata["operationId"] == "myPets"

    @pytest.mark.asyncio
    async def test_unknown_item_is_synthesized(self):
        response = await _send(_dispatcher(), "GET", "/pets/123")
        assert response.status_code == 200
        assert response.body["id"] == 123
        assert isinstance(response.body["name"], str)
        assert 0.01 <= response.body["price"] <= 9999.99
        assert response.metadata["source"] == "synthesized"
        assert response.metadata["stateful"] is False

    @pytest.mark.asyncio
    async def test_repeated_read_is_identical(self):
        dispatcher = _dispatcher()
        first = await _send(dispatcher, "GET", "/pets/123")
        second = await _send(dispatcher, "GET", "/pets/123")
        assert second.body == first.body
        assert second.metadata["source"] == "stored"

    @pytest.mark.asyncio
    async def test_synthesized_reads_not_persisted(self):
        dispatcher = _dispatcher(config=MockConfig(persist_synthesized_reads=False))
        await _send(dispatcher, "GET", "/pets/123")
        assert dispatcher.store.keys() == []

    @pytest.mark.asyncio
    async def test_query_filter(self):
        dispatcher = _dispatcher()
        await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 9.99})
        await _send(dispatcher, "POST", "/pets", {"name": "Bella", "price": 4.5})

        by_name = await _send(dispatcher, "GET", "/pets", query={"name": "re"})
        assert [p["name"] for p in by_name.body] == ["Rex"]
        by_price = await _send(dispatcher, "GET", "/pets", query={"price": "4.5"})
        assert [p["name"] for p in by_price.body] == ["Bella"]

    @pytest.mark.asyncio
    async def test_declared_query_parameter_does_not_filter(self):
        dispatcher = _dispatcher()
        await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 9.99})
        await _send(dispatcher, "POST", "/pets", {"name": "Bella", "price": 4.5})

        limited = await _send(dispatcher, "GET", "/pets", query={"limit": "10"})
        assert limited.status_code == 200
        assert sorted(p["name"] for p in limited.body) == ["Bella", "Rex"]
        combined = await _send(dispatcher, "GET", "/pets", query={"limit": "10", "name": "re"})
        assert [p["name"] for p in combined.body] == ["Rex"]

    @pytest.mark.asyncio
    async def test_collection_read_of_non_array_schema_is_synthesized(self):
        response = await _send(_dispatcher(), "GET", "/status")
        assert response.status_code == 200
        assert isinstance(response.body["ok"], bool)
        assert response.body["version"] == "1.0.0"

    @pytest.mark.asyncio
    async def test_broken_reference_still_answers(self):
        response = await _send(_dispatcher(), "GET", "/broken")
        assert response.status_code == 200
        assert set(response.body) == {"id", "name", "status"}

    @pytest.mark.asyncio
    async def test_query_string_in_path(self):
        dispatcher = _dispatcher()
        await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 9.99})
        response = await _send(dispatcher, "GET", "/pets?limit=5")
        assert response.status_code == 200


class TestNotFound:
    @pytest.mark.asyncio
    async def test_unknown_route(self):
        response = await _send(_dispatcher(), "GET", "/owners")
        assert response.status_code == 404
        assert response.body["error"] == "Mock endpoint not found"
        assert "GET /pets" in response.body["availableOperations"]

    @pytest.mark.asyncio
    async def test_wrong_method(self):
        response = await _send(_dispatcher(), "POST", "/status", {})
        assert response.status_code == 404


class TestFallbacks:
    @pytest.mark.asyncio
    async def test_synthesis_failure_uses_generic_record(self):
        dispatcher = _dispatcher()
        with patch.object(dispatcher.synthesizer, "synthesize", side_effect=RuntimeError("boom")):
            response = await _send(dispatcher, "GET", "/pets/9")
        assert response.status_code == 200
        assert response.body["id"] == 9
        assert response.body["name"] == "Mock pets"
        assert response.body["status"] == "active"

    @pytest.mark.asyncio
    async def test_fallback_failure_is_500(self):
        dispatcher = _dispatcher()
        with patch.object(dispatcher.synthesizer, "synthesize", side_effect=RuntimeError("boom")), \
                patch.object(dispatcher.synthesizer, "generic_record", side_effect=RuntimeError("worse")):
            response = await _send(dispatcher, "GET", "/pets/9")
        assert response.status_code == 500
        assert response.body["error"] == "Mock API error"
        assert response.body["path"] == "/pets/9"

    @pytest.mark.asyncio
    async def test_storage_failure_still_answers(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        store = ResourceStore(JsonFileStorage(blocker / "state.json"))
        dispatcher = _dispatcher(store=store)

        created = await _send(dispatcher, "POST", "/pets", {"name": "Rex", "price": 1.5})
        await store.flush()
        assert created.status_code == 201
        assert store.degraded is True
        assert (await _send(dispatcher, "GET", f"/pets/{created.body['id']}")).status_code == 200


class TestAugmented:
    @pytest.mark.asyncio
    async def test_augmented_value_used(self):
        augmenter = StubAugmenter(result={"id": 1, "name": "Fido", "price": 3.5})
        dispatcher = _dispatcher(augmenter=augmenter)
        response = await _send(dispatcher, "GET", "/pets/3", strategy="augmented")

        assert response.body["name"] == "Fido"
        assert response.body["id"] == 3
        assert response.metadata["source"] == "augmented"
        schema, context = augmenter.calls[0]
        assert schema["type"] == "object"
        assert context == {"endpoint": "/pets/3", "method": "GET"}

    @pytest.mark.asyncio
    async def test_strategy_from_config(self):
        augmenter = StubAugmenter(result={"id": 1, "name": "Fido", "price": 3.5})
        dispatcher = _dispatcher(augmenter=augmenter, config=MockConfig(strategy="augmented"))
        response = await _send(dispatcher, "GET", "/pets/3")
        assert response.metadata["source"] == "augmented"

    @pytest.mark.asyncio
    async def test_pattern_strategy_ignores_augmenter(self):
        augmenter = StubAugmenter(result={"name": "Fido"})
        await _send(_dispatcher(augmenter=augmenter), "GET", "/pets/3")
        assert augmenter.calls == []

    @pytest.mark.asyncio
    async def test_error_falls_back_to_patterns(self):
        augmenter = StubAugmenter(error=RuntimeError("rate limited"))
        response = await _send(_dispatcher(augmenter=augmenter), "GET", "/pets/3", strategy="augmented")
        assert response.status_code == 200
        assert response.metadata["source"] == "synthesized"
        assert "price" in response.body

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_patterns(self):
        augmenter = StubAugmenter(result={"name": "Late"}, delay=0.3)
        config = MockConfig(augment_timeout=0.05)
        response = await _send(_dispatcher(augmenter=augmenter, config=config), "GET", "/pets/3", strategy="augmented")
        assert response.status_code == 200
        assert response.body.get("name") != "Late"
        assert response.metadata["source"] == "synthesized"


class TestDurableState:
    @pytest.mark.asyncio
    async def test_state_survives_restart(self, tmp_path):
        state = tmp_path / "state.json"
        store = ResourceStore.open(JsonFileStorage(state))
        created = await _send(_dispatcher(store=store), "POST", "/pets", {"name": "Rex", "price": 1.5})
        await store.flush()

        reopened = ResourceStore.open(JsonFileStorage(state))
        read = await _send(_dispatcher(store=reopened), "GET", f"/pets/{created.body['id']}")
        assert read.body == created.body

    @pytest.mark.asyncio
    async def test_delay(self):
        dispatcher = _dispatcher(config=MockConfig(delay_ms=50))
        loop = asyncio.get_running_loop()
        started = loop.time()
        await _send(dispatcher, "GET", "/status")
        assert loop.time() - started >= 0.045


class TestFilterRecords:
    def test_no_query(self):
        records = [{"a": 1}]
        assert filter_records(records, {}) is records

    def test_booleans_and_missing_fields(self):
        records = [{"done": True}, {"done": False}, {"other": 1}]
        assert filter_records(records, {"done": "true"}) == [{"done": True}]

    def test_declared_parameter_filters_only_when_a_record_carries_it(self):
        records = [{"name": "Rex", "sort": "a"}, {"name": "Bella"}]
        assert filter_records(records, {"limit": "1"}, {"limit"}) is records
        assert filter_records(records, {"limit": "1"}) == []
        assert filter_records(records, {"sort": "a"}, {"sort"}) == [{"name": "Rex", "sort": "a"}]
