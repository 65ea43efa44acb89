from __future__ import annotations

from pydantic import BaseModel, Field


class Config(BaseModel):
    model_config = {"extra": "forbid"}


class TreeConfig(Config):
    timeout: float = Field(default=30.0, gt=0, description="The HTTP request timeout, in seconds.")
    tokens: dict[str, str] = Field(
        default={}, description="The authentication token of each server URL."
    )
    protocol_versions: dict[str, int] = Field(
        default={},
        description="The protocol major version of each server URL, instead of asking the server.",
    )
    debug: bool = False

    def normalized(self) -> TreeConfig:
        return self.model_copy(
            update={
                "tokens": {k.rstrip("/"): v for k, v in self.tokens.items()},
                "protocol_versions": {
                    k.rstrip("/"): v for k, v in self.protocol_versions.items()
                },
            }
        )


def parse_assignments(values: tuple[str, ...], option: str) -> dict[str, str]:
    """Parse ``KEY=VALUE`` pairs, splitting on the last ``=`` since keys are URLs."""
    assignments = {}
    for value in values:
        key, sep, val = value.rpartition("=")
        if not sep or not key:
            raise ValueError(f"{option} expects KEY=VALUE, got {value!r}")
        assignments[key] = val
    return assignments
