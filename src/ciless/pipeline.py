from typing import Protocol

from sanic.log import logger

from ciless import buildspec, metrics, template
from ciless.config import Config
from ciless.exceptions import (
    BridgeError,
    ConfigDecodeError,
    ConfigNotFoundError,
    TransportError,
)
from ciless.github.models import PullRequestEvent
from ciless.reconciler import Reconciler, ReconcileOutcome, ReconcileResult


class Fetcher(Protocol):
    async def fetch(self, owner: str, repo: str, ref: str) -> bytes: ...


class Pipeline:
    """Fetch, decode, build and reconcile the template for one pull request."""

    def __init__(
        self,
        fetcher: Fetcher,
        reconciler: Reconciler,
        prefix: str = template.DEFAULT_PREFIX,
        allow_empty: bool = False,
    ):
        self.fetcher = fetcher
        self.reconciler = reconciler
        self.prefix = prefix
        self.allow_empty = allow_empty

    @classmethod
    def from_config(
        cls, fetcher: Fetcher, reconciler: Reconciler, config: Config
    ) -> "Pipeline":
        return cls(
            fetcher,
            reconciler,
            prefix=config.TEMPLATE_PREFIX,
            allow_empty=config.ALLOW_EMPTY_STEPS,
        )

    async def process(self, pr: PullRequestEvent) -> ReconcileResult:
        """Run every stage, letting the first failure propagate."""
        with metrics.track_config_fetch():
            raw = await self.fetcher.fetch(pr.repo_owner, pr.repo_name, pr.head_ref)

        spec = buildspec.decode(raw, allow_empty=self.allow_empty)
        logger.debug("Decoded %d steps for %s@%s", len(spec.steps), pr.repo_slug, pr.head_ref)

        bt = template.build(pr.repo_slug, pr.head_ref, spec, prefix=self.prefix)
        logger.debug("Reconciling build template %s", bt.name)

        return await self.reconciler.reconcile(bt)

    async def run(self, pr: PullRequestEvent) -> ReconcileResult | None:
        """Process one pull request event, logging instead of raising."""
        logger.info(
            "Handling PR #%d (%s) for %s@%s", pr.number, pr.action, pr.repo_slug, pr.head_ref
        )
        with metrics.track_pipeline_run():
            try:
                result = await self.process(pr)
            except ConfigNotFoundError as e:
                logger.info("No build config, skipping: %s", e)
                metrics.pipeline_runs_total.labels("no_config").inc()
                return None
            except ConfigDecodeError as e:
                logger.warning(
                    "Invalid build config in %s@%s: %s", pr.repo_slug, pr.head_ref, e
                )
                metrics.pipeline_runs_total.labels("invalid_config").inc()
                return None
            except TransportError as e:
                logger.error(
                    "Could not fetch build config for %s@%s: %s",
                    pr.repo_slug,
                    pr.head_ref,
                    e,
                )
                metrics.pipeline_runs_total.labels("transport_error").inc()
                return None
            except BridgeError as e:
                logger.error(
                    "Pipeline for %s@%s failed: %s", pr.repo_slug, pr.head_ref, e
                )
                metrics.pipeline_runs_total.labels("failed").inc()
                return None

        metrics.pipeline_runs_total.labels(result.outcome.value).inc()
        if result.outcome == ReconcileOutcome.failed:
            logger.error(
                "Build template %s for %s@%s not reconciled (%s): %s",
                result.name,
                pr.repo_slug,
                pr.head_ref,
                result.reason,
                result.error,
            )
        else:
            logger.info(
                "Build template %s %s after %d attempt(s)",
                result.name,
                result.outcome.value,
                result.attempts,
            )
        return result
