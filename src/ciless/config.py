import re
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings
from sanic.log import logger


class Config(BaseSettings):
    WEBHOOK_SECRET: Annotated[str, Field(min_length=1)]
    GITHUB_PERSONAL_TOKEN: Annotated[str, Field(min_length=1)]

    GITHUB_API_URL: str = "https://api.github.com"
    CONFIG_FILE_PATH: str = ".ciless.yaml"

    TEMPLATE_PREFIX: str = "knative-ci-"

    KUBE_NAMESPACE: str = "default"
    KUBECONFIG: str | None = None
    KUBE_MASTER_URL: str | None = None

    REQUEST_TIMEOUT: float = 10.0
    FETCH_ATTEMPTS: Annotated[int, Field(ge=1)] = 3
    FETCH_BACKOFF: float = 0.5
    UPDATE_ATTEMPTS: Annotated[int, Field(ge=1)] = 3

    ALLOW_EMPTY_STEPS: bool = False

    PULL_REQUEST_ACTIONS: list[str] = [
        "opened",
        "synchronize",
        "reopened",
        "ready_for_review",
    ]

    MAX_CONCURRENT_PIPELINES: Annotated[int, Field(ge=1)] = 8
    SHUTDOWN_DRAIN_TIMEOUT: float = 30.0

    OVERRIDE_LOGGING: Literal[
        "CRITICAL",
        "FATAL",
        "ERROR",
        "WARNING",
        "WARN",
        "INFO",
        "DEBUG",
        "NOTSET",
    ] = "INFO"

    STERILE: bool = False

    @field_validator("TEMPLATE_PREFIX")
    @classmethod
    def check_prefix(cls, value: str) -> str:
        if value and not re.fullmatch(r"[a-z0-9][-a-z0-9]*", value):
            raise ValueError(
                "TEMPLATE_PREFIX must start with a lowercase alphanumeric "
                "and contain only lowercase alphanumerics and hyphens"
            )
        if len(value) > 40:
            raise ValueError("TEMPLATE_PREFIX is too long to leave room for a name")
        return value

    def print_config(self):
        """Print configuration values with sensitive attributes masked"""
        sensitive_attrs = {
            "WEBHOOK_SECRET",
            "GITHUB_PERSONAL_TOKEN",
        }

        logger.info("=== ciless bridge configuration ===")
        for field_name, field_value in self.model_dump().items():
            if field_name in sensitive_attrs:
                logger.info(f"{field_name}: ***")
            else:
                logger.info(f"{field_name}: {field_value}")
        logger.info("===================================")
