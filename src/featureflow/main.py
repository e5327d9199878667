"""FastAPI application entry point for the feature request workflow.

This module wires the workflow service together and exposes:
- POST /slack/events: Slack Events API receiver
- GET /health: liveness probe
- GET /ready: readiness probe (database connectivity)
- GET /metrics: Prometheus metrics

Configuration values are logged on startup with secrets redacted.
"""

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Optional, Set

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from .catalog import RepositoryCatalog
from .chat.events import SlackEventParser
from .chat.models import ConversationEvent
from .chat.slack import SlackClient
from .config import FeatureFlowSettings, get_settings
from .github.cli import GitHubCLI
from .metrics import WorkflowMetrics
from .monitor.poller import PullRequestMonitor
from .runner.agent import CodingAgent
from .runner.process import ProcessRunner
from .state.gateway import DatabaseError, PostgresPersistenceGateway
from .state.store import SessionStore
from .workflow.machine import FeatureRequestWorkflow

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
settings: FeatureFlowSettings
gateway: Optional[PostgresPersistenceGateway] = None
slack_client: Optional[SlackClient] = None
event_parser: Optional[SlackEventParser] = None
workflow: Optional[FeatureRequestWorkflow] = None
monitor: Optional[PullRequestMonitor] = None
metrics = WorkflowMetrics()

# Strong references to in-flight event tasks so they are not collected
_event_tasks: Set[asyncio.Task] = set()


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters."""
    if not value:
        return "<unset>"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: FeatureFlowSettings) -> None:
    logger.info("Feature request workflow configuration:")
    logger.info(f"  Slack Base URL: {settings.slack_base_url}")
    logger.info(f"  Slack Bot Token: {_redact_secret(settings.slack_bot_token)}")
    logger.info(
        f"  Slack Signing Secret: {_redact_secret(settings.slack_signing_secret)}"
    )
    logger.info(f"  Slack Bot User ID: {settings.slack_bot_user_id}")
    logger.info(f"  Trigger Phrase: {settings.trigger_phrase}")
    logger.info(f"  Repositories: {settings.repositories}")
    logger.info(f"  Agent Command: {settings.agent_command}")
    logger.info(f"  gh CLI Path: {settings.gh_cli_path}")
    logger.info(f"  PR Poll Interval Seconds: {settings.pr_poll_interval_seconds}")
    logger.info(f"  Database URL: {_redact_secret(settings.database_url)}")
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


def _build_workflow(
    cfg: FeatureFlowSettings,
    store: SessionStore,
    chat: SlackClient,
    runner: ProcessRunner,
) -> FeatureRequestWorkflow:
    return FeatureRequestWorkflow(
        store=store,
        catalog=RepositoryCatalog(cfg.repositories),
        agent=CodingAgent(runner, command=cfg.agent_command),
        chat=chat,
        trigger_phrase=cfg.trigger_phrase,
        metrics=metrics,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Database connection and schema evolution
    - Rehydration of open sessions
    - Pull request monitor start and stop
    """
    global settings, gateway, slack_client, event_parser, workflow, monitor

    logger.info("Feature request workflow starting up...")

    settings = get_settings()
    _log_configuration(settings)

    gateway = PostgresPersistenceGateway(settings.database_url)
    try:
        await gateway.connect()
        await gateway.initialize()
    except DatabaseError:
        # Sessions keep running in memory; each failed write is logged
        logger.exception("Database unavailable at startup, continuing without persistence")

    slack_client = SlackClient(
        token=settings.slack_bot_token,
        base_url=settings.slack_base_url,
    )
    event_parser = SlackEventParser(
        signing_secret=settings.slack_signing_secret,
        bot_user_id=settings.slack_bot_user_id,
    )

    runner = ProcessRunner()
    store = SessionStore(gateway)
    workflow = _build_workflow(settings, store, slack_client, runner)
    await workflow.restore()

    monitor = PullRequestMonitor(
        store=store,
        workflow=workflow,
        github=GitHubCLI(runner, gh_path=settings.gh_cli_path),
        interval_seconds=settings.pr_poll_interval_seconds,
        metrics=metrics,
    )
    monitor.start()

    logger.info("Feature request workflow started successfully")

    yield

    logger.info("Feature request workflow shutting down...")

    if monitor is not None:
        await monitor.stop()
    if slack_client is not None:
        await slack_client.close()
    if gateway is not None:
        await gateway.disconnect()

    logger.info("Feature request workflow shutdown complete")


app = FastAPI(
    title="Feature Request Workflow",
    description="Slack-driven plan, approve, implement and PR monitoring workflow",
    version="1.0.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health():
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Returns:
        dict: Status and dependency health information; 503 when the
        database is unreachable.
    """
    database_healthy = gateway is not None and await gateway.health_check()
    body = {
        "status": "ready" if database_healthy else "not_ready",
        "dependencies": {
            "database": "healthy" if database_healthy else "unhealthy",
        },
    }
    return JSONResponse(body, status_code=200 if database_healthy else 503)


@app.get("/metrics", response_class=PlainTextResponse)
async def metrics_endpoint():
    return PlainTextResponse(metrics.generate().decode("utf-8"))


def _dispatch(event: ConversationEvent) -> None:
    task = asyncio.create_task(_route_event(event))
    _event_tasks.add(task)
    task.add_done_callback(_event_tasks.discard)


async def _route_event(event: ConversationEvent) -> None:
    try:
        await workflow.route(event)
    except Exception:
        logger.exception(
            "Unhandled error while processing Slack event",
            extra={"thread_id": event.thread_id},
        )


@app.post("/slack/events")
async def slack_events(request: Request):
    """Slack Events API receiver endpoint.

    Slack expects an acknowledgment within three seconds, so the workflow
    runs in a background task and the request returns immediately.
    Redeliveries (X-Slack-Retry-Num) are acknowledged and dropped.
    """
    if event_parser is None or workflow is None:
        logger.error("Workflow not initialized")
        return JSONResponse(
            {"status": "error", "message": "Workflow not initialized"},
            status_code=503,
        )

    body = await request.body()
    if not event_parser.verify_signature(
        request.headers.get("x-slack-request-timestamp"),
        body,
        request.headers.get("x-slack-signature"),
    ):
        logger.warning("Rejected Slack request with invalid signature")
        return Response(status_code=401)

    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        return Response(status_code=400)

    if isinstance(payload, dict) and payload.get("type") == "url_verification":
        return {"challenge": payload.get("challenge")}

    if request.headers.get("x-slack-retry-num"):
        return {"status": "ignored", "message": "Retry delivery"}

    event = event_parser.parse_event(payload)
    if event is None:
        return {"status": "ignored"}

    _dispatch(event)
    return {"status": "accepted", "thread_id": event.thread_id}


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.featureflow.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
    )
