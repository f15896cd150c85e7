"""Tests for the API document."""

from __future__ import annotations

from unittest.mock import MagicMock

from starlette.testclient import TestClient

from wcf_bridge.app import create_app
from wcf_bridge.routes import ROUTE_SPECS
from wcf_bridge.routes.schema import build_openapi


class TestOpenApi:
    def test_every_route_documented(self) -> None:
        doc = build_openapi()

        for spec in ROUTE_SPECS:
            assert spec.method.lower() in doc["paths"][spec.path], spec.path

    def test_json_body_references_payload_model(self) -> None:
        doc = build_openapi()

        operation = doc["paths"]["/text"]["post"]
        ref = operation["requestBody"]["content"]["application/json"]["schema"]["$ref"]
        assert ref == "#/components/schemas/TextMsg"

        schema = doc["components"]["schemas"]["TextMsg"]
        assert set(schema["required"]) == {"msg", "receiver"}
        assert schema["additionalProperties"] is False

    def test_query_parameters(self) -> None:
        doc = build_openapi()

        parameters = {p["name"]: p for p in doc["paths"]["/query-room-member"]["get"]["parameters"]}
        assert parameters["roomid"]["required"] is True
        assert parameters["wxids"]["required"] is False
        assert parameters["roomid"]["in"] == "query"

    def test_path_parameters(self) -> None:
        doc = build_openapi()

        (parameter,) = doc["paths"]["/{db}/tables"]["get"]["parameters"]
        assert parameter == {
            "name": "db",
            "in": "path",
            "required": True,
            "schema": parameter["schema"],
        }

    def test_command_kind_annotated(self) -> None:
        doc = build_openapi()
        assert doc["paths"]["/sql"]["post"]["x-command-kind"] == "query_sql"

    def test_served(self) -> None:
        client = TestClient(create_app(runtime=MagicMock()))

        response = client.get("/api-doc.json")

        assert response.status_code == 200
        assert response.json()["openapi"].startswith("3.")
