"""litellm wrapper behind the augmented generation strategy.

Any model litellm supports can be named; credentials come from the
provider's usual environment variables.
"""

import logging

from litellm import completion

from api_mock_engine.errors import AugmentationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.7


class LlmClient:
    """One system+user exchange per call."""

    def __init__(self, model: str | None = None, timeout: float | None = None,
                 temperature: float = DEFAULT_TEMPERATURE):
        self.model = model or DEFAULT_MODEL
        self.timeout = timeout
        self.temperature = temperature

    def call(self, system: str, user: str) -> str:
        """Return the answer text; provider errors surface as AugmentationError."""
        kwargs = {"timeout": self.timeout} if self.timeout is not None else {}
        logger.debug("Requesting mock data from %s", self.model)
        try:
            response = completion(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=self.temperature,
                **kwargs,
            )
        except Exception as e:
            raise AugmentationError(f"{self.model} request failed: {e}") from e

        choices = getattr(response, "choices", None) or []
        if not choices:
            raise AugmentationError(f"{self.model} returned no choices")
        return choices[0].message.content or ""
