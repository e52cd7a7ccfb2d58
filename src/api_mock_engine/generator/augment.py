"""LLM-backed augmentation: ask a model for realistic data matching a schema."""

import json
import re

from api_mock_engine.errors import AugmentationError
from api_mock_engine.llm import LlmClient

SYSTEM_PROMPT = (
    "You are an expert at generating realistic, contextually appropriate mock data for APIs. "
    "Generate JSON data that matches the provided schema and context."
)


class LlmAugmenter:
    """Implements ``augment(schema, context)`` on top of LlmClient."""

    def __init__(self, model: str | None = None, timeout: float | None = None, client: LlmClient | None = None):
        self.client = client or LlmClient(model=model, timeout=timeout)

    def augment(self, schema: dict, context: dict | None = None):
        """Return a value for ``schema``; raises AugmentationError when unusable."""
        prompt = build_prompt(schema, context or {})
        answer = self.client.call(system=SYSTEM_PROMPT, user=prompt)
        if not answer:
            raise AugmentationError("No response from model")
        try:
            return json.loads(_extract_json(answer))
        except json.JSONDecodeError as e:
            raise AugmentationError(f"Model answer is not JSON: {e}") from e


def build_prompt(schema: dict, context: dict) -> str:
    prompt = f"Generate realistic mock data for this JSON schema:\n\n{json.dumps(schema, indent=2)}\n\n"

    if context.get("businessDomain"):
        prompt += f"Business domain: {context['businessDomain']}\n"
    if context.get("endpoint"):
        prompt += f"API endpoint: {context['endpoint']}\n"
    if context.get("method"):
        prompt += f"HTTP method: {context['method']}\n"

    prompt += (
        "\nRequirements:\n"
        "- Generate realistic, production-like data\n"
        "- Follow the exact schema structure\n"
        "- Use appropriate data types and formats\n"
        "- Return only valid JSON, no explanations"
    )
    return prompt


def _extract_json(text: str) -> str:
    """Extract JSON from a response that might contain Markdown code blocks."""
    match = re.search(r"```(?:json)?\s*\n(.*?)```", text, re.DOTALL)
    if match:
        return match.group(1).strip()
    return text.strip()
