import aiohttp
import cachetools
import gidgethub
from aiolimiter import AsyncLimiter
from gidgethub import aiohttp as gh_aiohttp
from gidgethub.sansio import Event as GitHubEvent
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sanic import Sanic, response
from sanic.log import logger

from ciless import metrics
from ciless.cluster import BuildTemplateClient
from ciless.config import Config
from ciless.exceptions import AuthenticityError, UnsupportedEventError
from ciless.github.contents import ConfigFetcher
from ciless.github.router import dispatch
from ciless.pipeline import Pipeline
from ciless.reconciler import Reconciler
from ciless.worker import Worker


def parse_event(headers, body: bytes, secret: str) -> GitHubEvent:
    """Verify and decode a GitHub webhook delivery.

    Raises :class:`AuthenticityError` for a bad or missing signature, and
    ``ValueError`` for a delivery that cannot be decoded.
    """
    try:
        return GitHubEvent.from_http(headers, body, secret=secret)
    except gidgethub.ValidationFailure as e:
        raise AuthenticityError(str(e)) from e
    except (gidgethub.BadRequest, KeyError, ValueError) as e:
        raise ValueError(f"Undecodable delivery: {e!r}") from e


async def handle_github_webhook(request, *, app: Sanic):
    config: Config = app.ctx.config

    try:
        event = parse_event(request.headers, request.body, config.WEBHOOK_SECRET)
    except AuthenticityError as e:
        logger.warning("Rejecting webhook with invalid signature: %s", e)
        metrics.webhooks_rejected_total.labels("signature").inc()
        return response.empty(status=401)
    except ValueError as e:
        logger.warning("Dropping webhook: %s", e)
        metrics.webhooks_rejected_total.labels("malformed").inc()
        return response.empty(status=400)

    metrics.webhooks_received_total.labels(event.event).inc()
    logger.debug("Delivery %s carries %s event", event.delivery_id, event.event)

    try:
        await dispatch(
            event, pipeline=app.ctx.pipeline, worker=app.ctx.worker, config=config
        )
    except UnsupportedEventError as e:
        logger.info("Ignoring delivery %s: %s", event.delivery_id, e)
        metrics.webhooks_dropped_total.labels("unsupported").inc()

    return response.empty(200)


def create_app(config: Config | None = None, pipeline: Pipeline | None = None):
    if config is None:
        config = Config()  # type: ignore[call-arg]

    app = Sanic("ciless-bridge")
    app.ctx.config = config
    logger.setLevel(config.OVERRIDE_LOGGING)

    app.ctx.cache = cachetools.LRUCache(maxsize=500)
    app.ctx.worker = Worker(config.MAX_CONCURRENT_PIPELINES)
    if pipeline is not None:
        app.ctx.pipeline = pipeline

    limiter = AsyncLimiter(10)

    @app.listener("before_server_start")
    async def init(app, loop):
        config.print_config()

        logger.debug("Creating aiohttp session")
        app.ctx.aiohttp_session = aiohttp.ClientSession()
        app.ctx.gh = gh_aiohttp.GitHubAPI(
            app.ctx.aiohttp_session,
            "ciless-bridge",
            oauth_token=config.GITHUB_PERSONAL_TOKEN,
            cache=app.ctx.cache,
            base_url=config.GITHUB_API_URL,
        )

        if not hasattr(app.ctx, "pipeline"):
            app.ctx.templates = BuildTemplateClient.from_config(config)
            app.ctx.pipeline = Pipeline.from_config(
                ConfigFetcher.from_config(app.ctx.gh, config),
                Reconciler(
                    app.ctx.templates,
                    update_attempts=config.UPDATE_ATTEMPTS,
                    sterile=config.STERILE,
                ),
                config,
            )

    @app.listener("before_server_stop")
    async def drain(app, loop):
        await app.ctx.worker.drain(timeout=config.SHUTDOWN_DRAIN_TIMEOUT)

    @app.listener("after_server_stop")
    async def close(app, loop):
        logger.debug("Closing aiohttp session")
        await app.ctx.aiohttp_session.close()

    @app.route("/", methods=["GET"])
    async def index(request):
        logger.debug("status check")
        return response.text("ok")

    @app.route("/health")
    async def health(request):
        if not limiter.has_capacity():
            return response.text("Rate limited", status=429)
        await limiter.acquire()

        github_ok = False
        cluster_ok = False

        logger.info("Checking health")
        try:
            await app.ctx.gh.getitem("/user")
            logger.info("GitHub ok")
            github_ok = True
        except Exception as e:
            logger.error("GitHub token check failed: %s", e)
            github_ok = False

        templates = getattr(app.ctx, "templates", None)
        if templates is None:
            logger.debug("No cluster client configured, skipping cluster check")
            cluster_ok = True
        else:
            try:
                await templates.list_templates(limit=1)
                logger.info("Cluster ok")
                cluster_ok = True
            except Exception as e:
                logger.error("Cluster check failed: %s", e)
                cluster_ok = False

        status = 200 if github_ok and cluster_ok else 500
        github_str = "ok" if github_ok else "not ok"
        cluster_str = "ok" if cluster_ok else "not ok"
        text = f"GitHub: {github_str}, Cluster: {cluster_str}"
        return response.text(text, status=status)

    @app.route("/metrics")
    async def metrics_endpoint(request):
        return response.raw(
            generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST}
        )

    @app.route("/webhook", methods=["POST"])
    async def webhook(request):
        logger.debug("Webhook received")
        return await handle_github_webhook(request, app=app)

    @app.route("/webhook/github", methods=["POST"])
    async def github(request):
        logger.debug("Webhook received on github endpoint")
        return await handle_github_webhook(request, app=app)

    @app.route("/", methods=["POST"], name="compat_webhook")
    async def compat_webhook(request):
        logger.debug("Webhook received on compatibility endpoint")
        return await handle_github_webhook(request, app=app)

    return app
