"""SpecRegistry: the specification-lookup capability handed to the Dispatcher."""

import logging

from api_mock_engine.errors import RouteNotFound
from api_mock_engine.parser.base import SpecDocument

from .matcher import OperationMatcher, RouteMatch, normalize_path

logger = logging.getLogger(__name__)


class SpecRegistry:
    """Imported documents by name, consulted in registration order."""

    def __init__(self, documents: list[SpecDocument] | None = None):
        self._entries: dict[str, tuple[SpecDocument, OperationMatcher]] = {}
        for doc in documents or []:
            self.register(doc)

    def register(self, document: SpecDocument) -> None:
        """Add a document; an existing one with the same name is replaced."""
        if document.name in self._entries:
            del self._entries[document.name]
        self._entries[document.name] = (document, OperationMatcher(document))
        logger.info("Registered spec for mocking: %s (%d operations)", document.name, len(document.operations()))

    def unregister(self, name: str) -> bool:
        return self._entries.pop(name, None) is not None

    def documents(self) -> list[SpecDocument]:
        return [doc for doc, _ in self._entries.values()]

    def match(self, method: str, path: str) -> tuple[SpecDocument, RouteMatch]:
        known: list[str] = []
        for doc, matcher in self._entries.values():
            try:
                return doc, matcher.match(method, path)
            except RouteNotFound as e:
                known.extend(e.known_operations)
        raise RouteNotFound(method.upper(), normalize_path(path), known)

    def __len__(self) -> int:
        return len(self._entries)
