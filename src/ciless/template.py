import hashlib
import re
from typing import Any

from pydantic import BaseModel, ConfigDict

from ciless.buildspec import BuildSpec, BuildStep

API_GROUP = "build.knative.dev"
API_VERSION = "v1alpha1"
KIND = "BuildTemplate"
PLURAL = "buildtemplates"

DEFAULT_PREFIX = "knative-ci-"
MAX_NAME_LENGTH = 63
DIGEST_LENGTH = 10

NAME_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
_ILLEGAL = re.compile(r"[^a-z0-9-]+")

SLUG_ANNOTATION = "ciless.dev/repo-slug"
REF_ANNOTATION = "ciless.dev/ref"
MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY = "ciless-bridge"


class TemplateParameter(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    description: str


PARAMETERS: tuple[TemplateParameter, ...] = (
    TemplateParameter(
        name="REPO_DIR",
        description="Local directory path to checked out repository",
    ),
    TemplateParameter(
        name="USER_REPO_SLUG",
        description="<username>/<repository_name>",
    ),
    TemplateParameter(
        name="COMMIT_REF",
        description="Git REF for the current change",
    ),
)


class BuildTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    repo_slug: str
    ref: str
    parameters: tuple[TemplateParameter, ...] = PARAMETERS
    steps: tuple[BuildStep, ...]
    resource_version: str | None = None

    def with_resource_version(self, resource_version: str | None) -> "BuildTemplate":
        return self.model_copy(update={"resource_version": resource_version})

    def to_manifest(self) -> dict[str, Any]:
        metadata: dict[str, Any] = {
            "name": self.name,
            "labels": {MANAGED_BY_LABEL: MANAGED_BY},
            "annotations": {
                SLUG_ANNOTATION: self.repo_slug,
                REF_ANNOTATION: self.ref,
            },
        }
        if self.resource_version is not None:
            metadata["resourceVersion"] = self.resource_version

        return {
            "apiVersion": f"{API_GROUP}/{API_VERSION}",
            "kind": KIND,
            "metadata": metadata,
            "spec": {
                "parameters": [p.model_dump() for p in self.parameters],
                "steps": [
                    {"name": s.name, "image": s.image, "args": list(s.args)}
                    for s in self.steps
                ],
            },
        }


def template_name(
    repo_slug: str,
    ref: str,
    prefix: str = DEFAULT_PREFIX,
    max_length: int = MAX_NAME_LENGTH,
) -> str:
    """Derive the resource name for a repository and ref.

    The plain ``<prefix><owner>-<repo>-ref-<ref>`` form is kept whenever it is
    already a valid resource name. Anything else is lowercased, stripped of
    illegal characters, truncated and suffixed with a digest of the raw inputs.
    """
    raw = prefix + repo_slug.replace("/", "-", 1) + "-ref-" + ref
    if len(raw) <= max_length and NAME_PATTERN.match(raw):
        return raw

    digest = hashlib.sha1(f"{repo_slug}\0{ref}".encode("utf-8")).hexdigest()
    digest = digest[:DIGEST_LENGTH]

    cleaned = _ILLEGAL.sub("-", raw.lower())
    cleaned = re.sub(r"-{2,}", "-", cleaned).strip("-")
    base = cleaned[: max_length - DIGEST_LENGTH - 1].rstrip("-")
    if not base:
        return digest
    return f"{base}-{digest}"


def build(
    repo_slug: str, ref: str, spec: BuildSpec, prefix: str = DEFAULT_PREFIX
) -> BuildTemplate:
    return BuildTemplate(
        name=template_name(repo_slug, ref, prefix=prefix),
        repo_slug=repo_slug,
        ref=ref,
        steps=spec.steps,
    )
