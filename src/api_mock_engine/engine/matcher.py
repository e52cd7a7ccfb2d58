"""Operation Matcher: map (method, concrete path) to a declared operation."""

import re

from pydantic import BaseModel

from api_mock_engine.errors import RouteNotFound
from api_mock_engine.parser.base import Operation, SpecDocument

PARAM_SEGMENT = re.compile(r"\{([^}/]+)\}")


class RouteMatch(BaseModel):
    """A matched operation plus the values bound to its path parameters."""

    operation: Operation
    params: dict[str, str] = {}

    @property
    def ends_with_param(self) -> bool:
        last = self.operation.path.rstrip("/").rsplit("/", 1)[-1]
        return bool(PARAM_SEGMENT.fullmatch(last))


def compile_template(template: str) -> tuple[re.Pattern, list[str]]:
    """Turn ``/pets/{petId}`` into a full-match regex and its parameter names."""
    names = []
    parts = []
    last = 0
    for m in PARAM_SEGMENT.finditer(template):
        parts.append(re.escape(template[last:m.start()]))
        parts.append("([^/]+)")
        names.append(m.group(1))
        last = m.end()
    parts.append(re.escape(template[last:]))
    return re.compile("".join(parts)), names


def normalize_path(path: str) -> str:
    return "/" + path.split("?", 1)[0].strip("/")


class OperationMatcher:
    """Exact lookup first, then templates in declaration order (first wins)."""

    def __init__(self, document: SpecDocument):
        self.document = document
        self._templates: dict[str, list[tuple[re.Pattern, list[str], Operation]]] = {}
        for template, methods in document.paths.items():
            if not PARAM_SEGMENT.search(template):
                continue
            regex, names = compile_template(template)
            for method, operation in methods.items():
                self._templates.setdefault(method, []).append((regex, names, operation))

    def match(self, method: str, path: str) -> RouteMatch:
        method = method.upper()
        path = normalize_path(path)

        exact = self.document.get(method, path)
        if exact is not None:
            return RouteMatch(operation=exact)

        for regex, names, operation in self._templates.get(method, []):
            m = regex.fullmatch(path)
            if m:
                return RouteMatch(operation=operation, params=dict(zip(names, m.groups())))

        raise RouteNotFound(method, path, self.known_operations())

    def known_operations(self) -> list[str]:
        return [op.label for op in self.document.operations()]
