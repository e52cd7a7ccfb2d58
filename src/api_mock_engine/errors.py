"""Error taxonomy for the mock engine.

Only RouteNotFound and RequestValidationError ever reach a caller as a
response; the others are recovered close to where they are raised.
"""


class MockEngineError(Exception):
    """Base class for every error raised by the engine."""


class ConfigError(MockEngineError):
    """Invalid configuration value."""


class SpecFormatError(MockEngineError):
    """The input is not an OpenAPI or Swagger document."""


class RouteNotFound(MockEngineError):
    """No declared operation matches the request."""

    def __init__(self, method: str, path: str, known_operations: list[str] | None = None):
        self.method = method
        self.path = path
        self.known_operations = known_operations or []
        super().__init__(f"No mock available for {method} {path}")


class RequestValidationError(MockEngineError):
    """The submitted body violates the operation's request schema."""

    def __init__(self, violations: list[dict]):
        self.violations = violations
        super().__init__(f"{len(violations)} violation(s) in request body")


class ResolutionFailure(MockEngineError):
    """A reference could not be followed (missing target or a cycle)."""

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"Cannot resolve {reference}: {reason}")


class SynthesisFailure(MockEngineError):
    """Value generation failed, including the generic fallback."""


class StorageFailure(MockEngineError):
    """The durable-storage hook could not load or save."""


class AugmentationError(MockEngineError):
    """The external augmentation service returned nothing usable."""
