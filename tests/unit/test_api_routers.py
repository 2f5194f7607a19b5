"""
Unit tests for the document API using an in-memory engine.
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient
from pymongo.errors import PyMongoError

from docgate.api.dependencies import get_engine, get_registry
from docgate.api.main import app
from docgate.storage.collections import CollectionRegistry
from docgate.storage.engines.mongo import MongoEngine
from docgate.storage.errors import BackendError, CapabilityNotSupportedError, InvalidQueryError


@pytest.fixture
def registry():
    return CollectionRegistry.from_settings("content:uuid")


@pytest.fixture
def client(memory_engine, registry):
    app.dependency_overrides[get_engine] = lambda: memory_engine
    app.dependency_overrides[get_registry] = lambda: registry
    yield TestClient(app)
    app.dependency_overrides.clear()


def lines(response):
    return [json.loads(line) for line in response.text.splitlines() if line.strip()]


class RefusedCursor:
    """Cursor of a server that went away after find() returned."""

    def __aiter__(self):
        return self

    async def __anext__(self):
        raise PyMongoError("connection refused")

    async def close(self):
        pass


class UnreachableMongo:
    def __getitem__(self, name):
        return self

    def find(self, filter, projection=None):
        return RefusedCursor()


class TestSingleDocument:

    def test_put_then_get(self, client):
        doc = {"uuid": "a1", "title": "hello", "nested": {"n": [1, 2]}}
        assert client.put("/content/a1", json=doc).status_code == 200

        response = client.get("/content/a1")
        assert response.status_code == 200
        assert response.json() == doc

    def test_get_missing_returns_404(self, client):
        response = client.get("/content/nope")
        assert response.status_code == 404
        assert "nope" in response.text

    def test_put_with_mismatched_id_returns_400(self, client, memory_engine):
        response = client.put("/content/a1", json={"uuid": "b2"})
        assert response.status_code == 400
        assert memory_engine.writes == []

    def test_put_uses_uuid_before_id(self, client):
        assert client.put("/content/b", json={"uuid": "a", "id": "b"}).status_code == 400
        assert client.put("/content/a", json={"uuid": "a", "id": "b"}).status_code == 200

    def test_put_without_identifier_returns_400(self, client):
        assert client.put("/content/a1", json={"title": "x"}).status_code == 400

    def test_put_malformed_body_returns_400(self, client):
        response = client.put("/content/a1", content=b"{not json")
        assert response.status_code == 400

    def test_backend_failure_returns_500(self, client, memory_engine):
        memory_engine.write = AsyncMock(side_effect=BackendError("index unavailable"))
        assert client.put("/content/a1", json={"uuid": "a1"}).status_code == 500

    def test_delete_document(self, client):
        client.put("/content/a1", json={"uuid": "a1"})
        assert client.delete("/content/a1").status_code == 200
        assert client.delete("/content/a1").status_code == 404

    def test_invalid_collection_name_returns_400(self, client):
        assert client.get("/_secret/a1").status_code == 400

    def test_values_without_a_json_type_are_rendered_as_strings(self, client, memory_engine):
        created = datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
        memory_engine.load = AsyncMock(return_value=(True, {"uuid": "a1", "created": created}))

        response = client.get("/content/a1")

        assert response.status_code == 200
        assert response.json() == {"uuid": "a1", "created": str(created)}

    def test_non_uuid_id_with_binary_ids_is_not_found(self):
        binary = CollectionRegistry.from_settings("content:uuid", binary_ids=True)
        engine = MongoEngine(binary, database="store", client=UnreachableMongo())
        app.dependency_overrides[get_engine] = lambda: engine
        app.dependency_overrides[get_registry] = lambda: binary
        try:
            client = TestClient(app)
            assert client.get("/content/not-a-uuid").status_code == 404
            assert client.delete("/content/not-a-uuid").status_code == 404
        finally:
            app.dependency_overrides.clear()


class TestCollection:

    def test_count(self, client):
        for i in range(3):
            client.put(f"/content/{i}", json={"uuid": str(i)})
        response = client.get("/content/count")
        assert response.status_code == 200
        assert response.text == "3"

    def test_drop(self, client):
        client.put("/content/a", json={"uuid": "a"})
        assert client.delete("/content/").status_code == 200
        assert client.get("/content/count").text == "0"

    def test_drop_unknown_collection_is_fine(self, client):
        assert client.delete("/never-seen/").status_code == 200
        assert client.get("/never-seen/count").text == "0"

    def test_dump_streams_every_document(self, client):
        for i in range(5):
            client.put(f"/content/{i}", json={"uuid": str(i), "n": i})

        response = client.get("/content/")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-ndjson")
        assert sorted(d["n"] for d in lines(response)) == [0, 1, 2, 3, 4]

    def test_ids(self, client):
        client.put("/content/x", json={"uuid": "x"})
        client.put("/content/y", json={"uuid": "y"})
        assert sorted(lines(client.get("/content/__ids"))) == ["x", "y"]


class TestSearch:

    def test_search_matches_all_terms(self, client):
        client.put("/content/a", json={"uuid": "a", "title": "red apple"})
        client.put("/content/b", json={"uuid": "b", "title": "green apple"})

        response = client.get("/content/search", params=[("term", "red"), ("term", "apple")])
        assert response.status_code == 200
        assert [d["uuid"] for d in lines(response)] == ["a"]

    def test_search_max_limits_results(self, client):
        for i in range(30):
            client.put(f"/content/{i}", json={"uuid": str(i), "title": "same"})

        assert len(lines(client.get("/content/search?term=same&max=5"))) == 5
        # Default of 20, also used when max is not a number
        assert len(lines(client.get("/content/search?term=same"))) == 20
        assert len(lines(client.get("/content/search?term=same&max=lots"))) == 20

    def test_unsupported_search_returns_501(self, client, memory_engine):
        memory_engine.search = AsyncMock(side_effect=CapabilityNotSupportedError("no search"))
        assert client.get("/content/search?term=x").status_code == 501

    def test_invalid_query_returns_400(self, client, memory_engine):
        memory_engine.search = AsyncMock(side_effect=InvalidQueryError("invalid query"))
        assert client.get("/content/search?term=((").status_code == 400


class TestStreamFailures:

    @pytest.fixture
    def mongo_client(self, registry):
        engine = MongoEngine(registry, database="store", client=UnreachableMongo())
        app.dependency_overrides[get_engine] = lambda: engine
        app.dependency_overrides[get_registry] = lambda: registry
        yield TestClient(app)
        app.dependency_overrides.clear()

    def test_cursor_failing_on_first_fetch_returns_500(self, mongo_client):
        response = mongo_client.get("/content/")
        assert response.status_code == 500
        assert "connection refused" in response.text

    def test_ids_cursor_failing_on_first_fetch_returns_500(self, mongo_client):
        assert mongo_client.get("/content/__ids").status_code == 500

    def test_first_hydration_failure_returns_500(self, client, memory_engine):
        memory_engine.data["content"] = {"a": {"uuid": "a", "title": "apple"}}
        memory_engine.load = AsyncMock(side_effect=BackendError("index unavailable"))

        assert client.get("/content/").status_code == 500
        assert client.get("/content/search?term=apple").status_code == 500

    def test_empty_collection_streams_empty_body(self, client):
        response = client.get("/content/")
        assert response.status_code == 200
        assert response.text == ""

    def test_failure_after_first_document_ends_the_stream(self, client, memory_engine):
        memory_engine.data["content"] = {"a": {"uuid": "a"}, "b": {"uuid": "b"}}
        memory_engine.load = AsyncMock(
            side_effect=[(True, {"uuid": "a"}), BackendError("index unavailable")]
        )

        response = client.get("/content/")

        assert response.status_code == 200
        assert lines(response) == [{"uuid": "a"}]


class TestBulk:

    def test_bulk_put(self, client, memory_engine):
        body = "\n".join(json.dumps({"uuid": f"d{i}", "n": i}) for i in range(100))

        response = client.put("/content/", content=body.encode())

        assert response.status_code == 200
        assert response.json() == {"written": 100}
        assert client.get("/content/count").text == "100"

    def test_bulk_put_with_malformed_document_returns_400(self, client):
        response = client.put("/content/", content=b'{"uuid": "a"}\n{oops')

        assert response.status_code == 400
        assert response.json()["written"] == 1

    def test_bulk_put_write_failure_returns_500_without_rollback(self, client, memory_engine):
        memory_engine.fail_ids = {"d3"}
        body = "\n".join(json.dumps({"uuid": f"d{i}"}) for i in range(10))

        response = client.put("/content/", content=body.encode())

        assert response.status_code == 500
        assert response.json()["written"] == 9
        assert client.get("/content/count").text == "9"


class TestHealth:

    def test_liveness(self, client):
        assert client.get("/health/live").json() == {"status": "alive"}

    def test_readiness(self, client):
        assert client.get("/health/ready").json()["status"] == "ready"
