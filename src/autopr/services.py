"""Dependency wiring for the bot.

Builds every collaborator from AutoPRSettings and connects them into a
DispatchBridge. Both the FastAPI server and the Lambda handler use this
module, so the two deployments share one wiring.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from langchain_core.language_models.chat_models import BaseChatModel
from prometheus_client import CollectorRegistry

from src.autopr.config import AutoPRSettings, DispatchMode
from src.autopr.events.emitter import CompositeEventEmitter, LoggingEventEmitter
from src.autopr.events.metrics import MetricsEventEmitter
from src.autopr.github.client import GitHubClient
from src.autopr.github.reconciler import PullRequestReconciler
from src.autopr.intake.bridge import DispatchBridge
from src.autopr.intake.dispatcher import (
    BackgroundTaskDispatcher,
    LambdaInvokeDispatcher,
    TaskDispatcher,
)
from src.autopr.llm.agent import ModificationAgent
from src.autopr.llm.client import LLMClient
from src.autopr.orchestrator import ModificationPipeline
from src.autopr.ratelimit.limiter import RateLimiter
from src.autopr.state.store import DynamoDBStore
from src.autopr.state.tracker import ProgressTracker
from src.autopr.workspace.workspace import WorkspaceProvisioner


logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """All long-lived collaborators for one deployment."""

    settings: AutoPRSettings
    store: DynamoDBStore
    tracker: ProgressTracker
    limiter: RateLimiter
    github: GitHubClient
    event_emitter: CompositeEventEmitter
    dispatcher: TaskDispatcher
    pipeline: ModificationPipeline
    bridge: DispatchBridge
    metrics_registry: Optional[CollectorRegistry] = None

    async def aclose(self) -> None:
        """Wait for in-flight work, then release clients."""
        await self.dispatcher.close()
        await self.event_emitter.close()
        await self.github.close()


def _build_dispatcher(settings: AutoPRSettings, lambda_client=None) -> TaskDispatcher:
    if settings.dispatch_mode == DispatchMode.LAMBDA:
        return LambdaInvokeDispatcher(
            function_name=settings.aws_lambda_function_name,
            lambda_client=lambda_client,
            region_name=settings.aws_region,
        )
    return BackgroundTaskDispatcher(max_in_flight=settings.max_concurrent_runs)


def build_services(
    settings: AutoPRSettings,
    dynamodb_client=None,
    lambda_client=None,
    github_transport: Optional[httpx.AsyncBaseTransport] = None,
    chat_model: Optional[BaseChatModel] = None,
    metrics_registry: Optional[CollectorRegistry] = None,
) -> ServiceContainer:
    """Wire all dependencies into a ServiceContainer.

    Args:
        settings: Validated bot settings.
        dynamodb_client: Optional boto3 DynamoDB client (for testing).
        lambda_client: Optional boto3 Lambda client (for testing).
        github_transport: Optional httpx transport (for testing).
        chat_model: Optional pre-built chat model (for testing).
        metrics_registry: Optional Prometheus registry (for testing).

    Returns:
        Fully wired ServiceContainer.
    """
    store = DynamoDBStore(
        table_name=settings.status_table_name,
        dynamodb_client=dynamodb_client,
        region_name=settings.aws_region,
    )
    tracker = ProgressTracker(store)
    limiter = RateLimiter(store, limit=settings.rate_limit_per_hour)

    github = GitHubClient(
        token=settings.github_token,
        base_url=settings.github_base_url,
        timeout=settings.github_timeout_seconds,
        transport=github_transport,
    )
    llm = LLMClient(
        api_key=settings.openai_api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        timeout=settings.llm_timeout_seconds,
        max_attempts=settings.llm_max_attempts,
        chat_model=chat_model,
    )

    event_emitter = CompositeEventEmitter(
        [
            LoggingEventEmitter(),
            MetricsEventEmitter(registry=metrics_registry),
        ]
    )

    pipeline = ModificationPipeline(
        github=github,
        agent=ModificationAgent(llm),
        tracker=tracker,
        provisioner=WorkspaceProvisioner(
            base_path=settings.workspace_base_path,
            retention_hours=settings.workspace_retention_hours,
        ),
        event_emitter=event_emitter,
        reconciler=PullRequestReconciler(github),
        git_author_name=settings.git_author_name,
        git_author_email=settings.git_author_email,
    )

    dispatcher = _build_dispatcher(settings, lambda_client=lambda_client)
    bridge = DispatchBridge(
        limiter=limiter,
        tracker=tracker,
        dispatcher=dispatcher,
        pipeline=pipeline,
    )
    if isinstance(dispatcher, BackgroundTaskDispatcher):
        dispatcher.bind(bridge.process)

    logger.info(
        "Services wired",
        extra={"dispatch_mode": settings.dispatch_mode.value},
    )

    return ServiceContainer(
        settings=settings,
        store=store,
        tracker=tracker,
        limiter=limiter,
        github=github,
        event_emitter=event_emitter,
        dispatcher=dispatcher,
        pipeline=pipeline,
        bridge=bridge,
        metrics_registry=metrics_registry,
    )
