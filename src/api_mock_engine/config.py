"""Runtime configuration, read from the environment."""

import os
from pathlib import Path

from pydantic import BaseModel, ValidationError, field_validator

from api_mock_engine.errors import ConfigError

STRATEGIES = ("pattern", "augmented")


class MockConfig(BaseModel):
    delay_ms: int = 0
    strategy: str = "pattern"
    enable_metadata: bool = True
    persist_synthesized_reads: bool = True
    optional_property_probability: float = 0.7
    augment_timeout: float = 10.0
    llm_model: str | None = None
    state_file: Path | None = None
    seed: int | None = None

    @field_validator("delay_ms")
    @classmethod
    def _non_negative_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError("MOCK_DELAY must be a non-negative number")
        return v

    @field_validator("strategy")
    @classmethod
    def _known_strategy(cls, v: str) -> str:
        if v not in STRATEGIES:
            raise ValueError(f"MOCK_MODE must be one of: {', '.join(STRATEGIES)}")
        return v

    @field_validator("optional_property_probability")
    @classmethod
    def _probability(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("optional_property_probability must be within [0, 1]")
        return v

    @classmethod
    def from_env(cls, environ: dict | None = None) -> "MockConfig":
        env = os.environ if environ is None else environ
        values = {
            "delay_ms": env.get("MOCK_DELAY"),
            "strategy": env.get("MOCK_MODE"),
            "enable_metadata": _flag(env.get("ENABLE_MOCK_METADATA")),
            "persist_synthesized_reads": _flag(env.get("MOCK_PERSIST_READS")),
            "augment_timeout": env.get("MOCK_AUGMENT_TIMEOUT"),
            "llm_model": env.get("MOCK_LLM_MODEL"),
            "state_file": env.get("MOCK_STATE_FILE"),
            "seed": env.get("MOCK_SEED"),
        }
        try:
            return cls(**{k: v for k, v in values.items() if v is not None})
        except ValidationError as e:
            raise ConfigError(str(e)) from e


def _flag(value: str | None) -> bool | None:
    if value is None:
        return None
    return value.strip().lower() not in ("false", "0", "no", "off")
