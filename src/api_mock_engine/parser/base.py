"""Data models for an imported API description.

The OpenAPI loader converts its input into these models; the engine only
reads them.
"""

from pydantic import BaseModel

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS")


class Param(BaseModel):
    """A single API parameter (query, path, header, or cookie)."""

    name: str
    location: str  # query / path / header / cookie
    required: bool
    param_type: str  # string / integer / boolean / array / object
    description: str = ""
    constraints: dict = {}  # min, max, pattern, enum, etc.


class Operation(BaseModel):
    """One method + path template with its request and response schemas."""

    method: str  # GET / POST / PUT / DELETE / PATCH
    path: str  # /api/users/{id}
    operation_id: str = ""
    summary: str = ""
    parameters: list[Param] = []
    request_body: dict | None = None
    responses: dict[str, dict | None] = {}  # {status_code: schema or None}

    @property
    def label(self) -> str:
        return f"{self.method} {self.path}"

    def success_schema(self, prefer: tuple[str, ...] = ("200", "201")) -> dict | None:
        """Pick the schema of the success response.

        Preferred codes win, then any other 2xx in declaration order, then
        ``default``.
        """
        for code in prefer:
            if self.responses.get(code) is not None:
                return self.responses[code]
        for code, schema in self.responses.items():
            if code.startswith("2") and schema is not None:
                return schema
        return self.responses.get("default")


class SpecDocument(BaseModel):
    """An imported API description.

    ``raw`` keeps the parsed document so internal references can be walked.
    ``paths`` maps path template -> METHOD -> Operation in declaration order.
    """

    name: str
    version: str = ""
    raw: dict = {}
    paths: dict[str, dict[str, Operation]] = {}

    def operations(self) -> list[Operation]:
        return [op for methods in self.paths.values() for op in methods.values()]

    def get(self, method: str, path: str) -> Operation | None:
        return self.paths.get(path, {}).get(method.upper())
