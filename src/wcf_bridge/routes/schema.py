"""API discoverability endpoint.

Serves an OpenAPI 3 document built from the route table and the pydantic
payload models, so the document cannot drift from what the routes accept.
"""

from __future__ import annotations

from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route

from .. import __version__
from .commands import ROUTE_SPECS, SOURCE_JSON, SOURCE_PATH, SOURCE_QUERY, RouteSpec

ENVELOPE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "status": {"type": "integer", "enum": [0, 1]},
        "error": {"type": ["string", "null"]},
        "data": {},
    },
    "required": ["status", "error", "data"],
}

_PARAMETER_LOCATION = {SOURCE_QUERY: "query", SOURCE_PATH: "path"}


def _parameters(spec: RouteSpec) -> list[dict[str, Any]]:
    if spec.request_model is None or spec.source not in _PARAMETER_LOCATION:
        return []
    schema = spec.request_model.model_json_schema()
    required = set(schema.get("required", []))
    location = _PARAMETER_LOCATION[spec.source]
    return [
        {
            "name": name,
            "in": location,
            "required": location == "path" or name in required,
            "schema": prop,
        }
        for name, prop in schema.get("properties", {}).items()
    ]


def _operation(spec: RouteSpec) -> dict[str, Any]:
    operation: dict[str, Any] = {
        "summary": spec.summary,
        "operationId": spec.endpoint.__name__,
        "tags": ["WCF"],
    }
    if spec.kind is not None:
        operation["x-command-kind"] = spec.kind.value

    parameters = _parameters(spec)
    if parameters:
        operation["parameters"] = parameters

    if spec.source == SOURCE_JSON and spec.request_model is not None:
        name = spec.request_model.__name__
        operation["requestBody"] = {
            "required": True,
            "content": {"application/json": {"schema": {"$ref": f"#/components/schemas/{name}"}}},
        }

    if spec.binary:
        ok = {"description": "File stream", "content": {"application/octet-stream": {}}}
    else:
        ok = {
            "description": "Command result",
            "content": {
                "application/json": {"schema": {"$ref": "#/components/schemas/ApiResponse"}}
            },
        }
    operation["responses"] = {
        "200": ok,
        "422": {"description": "Invalid arguments"},
        "502": {"description": "SDK transport failure"},
        "503": {"description": "SDK not connected"},
        "504": {"description": "SDK did not answer in time"},
    }
    return operation


def build_openapi() -> dict[str, Any]:
    """OpenAPI 3 document for every command route."""
    paths: dict[str, dict[str, Any]] = {}
    schemas: dict[str, Any] = {"ApiResponse": ENVELOPE_SCHEMA}

    for spec in ROUTE_SPECS:
        paths.setdefault(spec.path, {})[spec.method.lower()] = _operation(spec)
        if spec.source == SOURCE_JSON and spec.request_model is not None:
            schemas[spec.request_model.__name__] = spec.request_model.model_json_schema(
                ref_template="#/components/schemas/{model}"
            )

    return {
        "openapi": "3.1.0",
        "info": {
            "title": "WeChat SDK bridge",
            "description": "HTTP API over the WeChat automation SDK",
            "version": __version__,
        },
        "tags": [{"name": "WCF", "description": "WeChat commands"}],
        "paths": paths,
        "components": {"schemas": schemas},
    }


async def api_doc(request: Request) -> JSONResponse:
    return JSONResponse(build_openapi())


schema_routes = [
    Route("/api-doc.json", api_doc, methods=["GET"]),
]
