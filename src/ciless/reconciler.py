from enum import StrEnum
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict
from sanic.log import logger

from ciless.exceptions import (
    BridgeError,
    ClusterError,
    ConflictExhaustedError,
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
    TransportError,
)
from ciless.template import BuildTemplate


class TemplateStore(Protocol):
    async def get(self, name: str) -> dict[str, Any]: ...

    async def create(self, body: dict[str, Any]) -> dict[str, Any]: ...

    async def update(self, body: dict[str, Any]) -> dict[str, Any]: ...


class ReconcileOutcome(StrEnum):
    created = "created"
    updated = "updated"
    conflict_retried = "conflict_retried"
    failed = "failed"


class ReconcileResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    outcome: ReconcileOutcome
    attempts: int
    reason: str | None = None
    error: BridgeError | None = None
    resource: dict[str, Any] | None = None

    @property
    def ok(self) -> bool:
        return self.outcome != ReconcileOutcome.failed


class Reconciler:
    """Create or update a build template with optimistic concurrency.

    A lookup decides between create and update. A create that loses to a
    concurrent creator looks up again once and updates instead. An update
    always carries the resource version seen by the preceding lookup, and a
    stale version sends it back to the lookup, at most ``update_attempts``
    times.
    """

    def __init__(self, store: TemplateStore, update_attempts: int = 3, sterile: bool = False):
        self.store = store
        self.update_attempts = update_attempts
        self.sterile = sterile

    async def _lookup(self, name: str) -> dict[str, Any] | None:
        try:
            return await self.store.get(name)
        except ResourceNotFoundError:
            return None

    async def reconcile(self, template: BuildTemplate) -> ReconcileResult:
        name = template.name
        attempts = 0
        conflicts = 0
        create_raced = False

        def failed(reason: str, error: BridgeError) -> ReconcileResult:
            return ReconcileResult(
                name=name,
                outcome=ReconcileOutcome.failed,
                attempts=attempts,
                reason=reason,
                error=error,
            )

        while True:
            try:
                existing = await self._lookup(name)
            except (TransportError, ClusterError) as e:
                logger.error("Looking up %s failed: %s", name, e)
                return failed(_reason(e), e)

            if existing is None:
                attempts += 1
                if self.sterile:
                    logger.info("Sterile mode: would create %s", name)
                    return ReconcileResult(
                        name=name, outcome=ReconcileOutcome.created, attempts=attempts
                    )
                try:
                    created = await self.store.create(template.to_manifest())
                except ResourceAlreadyExistsError as e:
                    if create_raced:
                        logger.error("%s keeps appearing and vanishing, giving up", name)
                        return failed("create-race", e)
                    logger.debug("%s was created concurrently, looking it up again", name)
                    create_raced = True
                    continue
                except (TransportError, ClusterError) as e:
                    logger.error("Creating %s failed: %s", name, e)
                    return failed(_reason(e), e)

                logger.debug("Created %s", name)
                outcome = (
                    ReconcileOutcome.conflict_retried
                    if conflicts or create_raced
                    else ReconcileOutcome.created
                )
                return ReconcileResult(
                    name=name, outcome=outcome, attempts=attempts, resource=created
                )

            resource_version = existing.get("metadata", {}).get("resourceVersion")
            logger.debug("Found %s at resource version %s", name, resource_version)
            body = template.with_resource_version(resource_version).to_manifest()

            attempts += 1
            if self.sterile:
                logger.info("Sterile mode: would update %s", name)
                return ReconcileResult(
                    name=name, outcome=ReconcileOutcome.updated, attempts=attempts
                )
            try:
                updated = await self.store.update(body)
            except (ResourceConflictError, ResourceNotFoundError) as e:
                conflicts += 1
                logger.debug(
                    "Update of %s lost a race (%d/%d): %s",
                    name,
                    conflicts,
                    self.update_attempts,
                    e,
                )
                if conflicts >= self.update_attempts:
                    error = ConflictExhaustedError(name, conflicts)
                    logger.error("%s", error)
                    return failed("conflict-exhausted", error)
                continue
            except (TransportError, ClusterError) as e:
                logger.error("Updating %s failed: %s", name, e)
                return failed(_reason(e), e)

            logger.debug("Updated %s", name)
            outcome = (
                ReconcileOutcome.conflict_retried
                if conflicts or create_raced
                else ReconcileOutcome.updated
            )
            return ReconcileResult(
                name=name, outcome=outcome, attempts=attempts, resource=updated
            )


def _reason(e: BridgeError) -> str:
    if isinstance(e, TransportError):
        return "transport"
    if isinstance(e, ResourceNotFoundError):
        return "missing"
    return "rejected"
