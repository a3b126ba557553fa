"""
Decoding of the per-repository build config file.

The file is a YAML document with a single ``steps`` list, each step naming a
container ``image`` and its ``args``::

    steps:
      - name: build
        image: golang:1.20
        args: ["go", "build", "./..."]
"""

from typing import Annotated

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ciless.exceptions import ConfigDecodeError

STEP_NAME_PATTERN = r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$"


class BuildStep(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=63, pattern=STEP_NAME_PATTERN)]
    image: Annotated[str, Field(min_length=1)]
    args: tuple[str, ...] = ()


class BuildSpec(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    steps: tuple[BuildStep, ...]

    @field_validator("steps")
    @classmethod
    def check_unique_names(cls, steps: tuple[BuildStep, ...]) -> tuple[BuildStep, ...]:
        seen = set()
        for step in steps:
            if step.name in seen:
                raise ValueError(f"Duplicate step name {step.name!r}")
            seen.add(step.name)
        return steps


def _describe(e: ValidationError) -> str:
    parts = []
    for error in e.errors():
        location = ".".join(str(item) for item in error["loc"])
        parts.append(f"{location}: {error['msg']}" if location else error["msg"])
    return "; ".join(parts)


def decode(raw: bytes, allow_empty: bool = False) -> BuildSpec:
    """Parse raw config file content into a :class:`BuildSpec`.

    Raises :class:`ConfigDecodeError` for anything that is not a well-formed
    list of steps. An empty step list is rejected unless ``allow_empty`` is set.
    """
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ConfigDecodeError(f"Config is not valid UTF-8: {e}") from e

    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigDecodeError(f"Config is not valid YAML: {e}") from e

    if not isinstance(document, dict):
        raise ConfigDecodeError(
            f"Config must be a mapping with a 'steps' list, got {type(document).__name__}"
        )

    try:
        spec = BuildSpec.model_validate(document)
    except ValidationError as e:
        raise ConfigDecodeError(f"Invalid config: {_describe(e)}") from e

    if not spec.steps and not allow_empty:
        raise ConfigDecodeError("Config declares no steps")

    return spec
