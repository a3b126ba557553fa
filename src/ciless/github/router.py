from gidgethub.routing import Router
from gidgethub.sansio import Event
from pydantic import ValidationError
from sanic.log import logger

from ciless.config import Config
from ciless.exceptions import UnsupportedEventError
from ciless.github.models import PullRequestEvent, PullRequestPayload
from ciless.pipeline import Pipeline
from ciless.worker import Worker
from ciless import metrics

router = Router()


@router.register("pull_request")
async def on_pr(event: Event, pipeline: Pipeline, worker: Worker, config: Config):
    try:
        data = PullRequestPayload.model_validate(event.data)
    except ValidationError as e:
        logger.warning(
            "Malformed pull_request payload in delivery %s: %s", event.delivery_id, e
        )
        metrics.webhooks_dropped_total.labels("malformed").inc()
        return

    logger.debug("Received pull_request event on PR #%d", data.number)
    logger.debug("Action: %s", data.action)

    if data.action not in config.PULL_REQUEST_ACTIONS:
        logger.debug("Ignoring pull_request action %s", data.action)
        metrics.webhooks_dropped_total.labels("action").inc()
        return

    pr = PullRequestEvent.from_payload(data)
    logger.debug(
        "Head of PR #%d is %s at %s (%s)", pr.number, pr.repo_slug, pr.head_ref, pr.head_sha
    )

    worker.submit(pr.key, pipeline.run(pr))


@router.register("ping")
async def on_ping(event: Event, pipeline: Pipeline, worker: Worker, config: Config):
    logger.debug("Received ping event")


async def dispatch(event: Event, *, pipeline: Pipeline, worker: Worker, config: Config):
    """Route a verified event to its handler.

    Raises :class:`UnsupportedEventError` for event kinds without a handler.
    """
    if not router.fetch(event):
        raise UnsupportedEventError(event.event)

    logger.debug("Dispatching event %s", event.event)
    await router.dispatch(event, pipeline=pipeline, worker=worker, config=config)
