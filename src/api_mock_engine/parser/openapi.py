"""OpenAPI / Swagger document loader.

Parses OpenAPI 3.x and Swagger 2.0 documents into a SpecDocument.
"""

from pathlib import Path

import yaml

from api_mock_engine.errors import SpecFormatError

from .base import HTTP_METHODS, Operation, Param, SpecDocument


def load_document(file_path: Path, name: str | None = None) -> SpecDocument:
    """Load an OpenAPI/Swagger file (YAML or JSON) into a SpecDocument."""
    text = file_path.read_text(encoding="utf-8")
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SpecFormatError(f"{file_path}: {e}") from e
    return parse_document(data, name=name or file_path.stem)


def parse_document(data: dict, name: str | None = None) -> SpecDocument:
    """Convert an already-parsed OpenAPI/Swagger mapping into a SpecDocument."""
    if not isinstance(data, dict) or not ("openapi" in data or "swagger" in data):
        raise SpecFormatError("Not an OpenAPI or Swagger document")

    info = data.get("info") or {}
    paths: dict[str, dict[str, Operation]] = {}

    for path, methods in (data.get("paths") or {}).items():
        if not isinstance(methods, dict):
            continue
        shared_params = methods.get("parameters", [])
        for method, operation in methods.items():
            if method.upper() not in HTTP_METHODS or not isinstance(operation, dict):
                continue

            raw_params = shared_params + operation.get("parameters", [])
            request_body = _parse_request_body(operation.get("requestBody"))
            if request_body is None:
                # Swagger 2.0 carries the body as an `in: body` parameter
                request_body = _swagger_body_param(raw_params)

            paths.setdefault(path, {})[method.upper()] = Operation(
                method=method.upper(),
                path=path,
                operation_id=operation.get("operationId", ""),
                summary=operation.get("summary", ""),
                parameters=_parse_parameters(raw_params),
                request_body=request_body,
                responses=_parse_responses(operation.get("responses", {})),
            )

    return SpecDocument(
        name=name or info.get("title", "untitled"),
        version=str(info.get("version", "")),
        raw=data,
        paths=paths,
    )


def _parse_parameters(params: list[dict]) -> list[Param]:
    result = []
    for p in params:
        if "$ref" in p or p.get("in") == "body":
            continue
        # Swagger 2.0 puts type/constraints on the parameter itself
        schema = p.get("schema", p)
        constraints = {}
        for key in ("minimum", "maximum", "minLength", "maxLength", "pattern", "enum"):
            if key in schema:
                constraints[key] = schema[key]

        result.append(
            Param(
                name=p["name"],
                location=p.get("in", "query"),
                required=p.get("required", False),
                param_type=schema.get("type", "string"),
                description=p.get("description", ""),
                constraints=constraints,
            )
        )
    return result


def _parse_request_body(body: dict | None) -> dict | None:
    if not body:
        return None
    content = body.get("content", {})
    for content_type in ("application/json", "multipart/form-data"):
        if content_type in content:
            return content[content_type].get("schema")
    # Fallback: return first available schema
    for ct_data in content.values():
        return ct_data.get("schema")
    return None


def _swagger_body_param(params: list[dict]) -> dict | None:
    for p in params:
        if p.get("in") == "body":
            return p.get("schema")
    return None


def _parse_responses(responses: dict) -> dict[str, dict | None]:
    result = {}
    for status_code, resp in responses.items():
        if not isinstance(resp, dict):
            result[str(status_code)] = None
            continue
        schema = resp.get("schema")  # Swagger 2.0
        content = resp.get("content") or {}
        if "application/json" in content:
            schema = content["application/json"].get("schema")
        elif content:
            schema = next(iter(content.values())).get("schema")
        result[str(status_code)] = schema
    return result
