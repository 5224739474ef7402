"""Resilient client for the external video-generation API.

Every operation runs its transport call under the RetryEngine with a policy
chosen by operation category, turns a terminal failure into a ClassifiedError
and, when a PerformanceMonitor is attached, records the outcome.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional

from reelcall.domain.interfaces.generation_api import GenerationApi
from reelcall.domain.models.common import (
    SYSTEM_TARGET,
    UNKNOWN_TARGET,
    JobId,
    MetricContext,
    TargetId,
)
from reelcall.domain.models.errors import ClassifiedError
from reelcall.domain.models.retry import OPERATION_POLICIES, RetryPolicy
from reelcall.infrastructure.config import settings
from reelcall.infrastructure.monitoring.performance_monitor import PerformanceMonitor
from reelcall.infrastructure.resilience.error_classifier import ErrorClassifier
from reelcall.infrastructure.resilience.retry_engine import RetryEngine
from reelcall.infrastructure.transport.http_api import HttpGenerationApi

logger = logging.getLogger(__name__)

# Operation names as recorded in metrics
CREATE_PREDICTION = "create_prediction"
GET_PREDICTION = "get_prediction"
CANCEL_PREDICTION = "cancel_prediction"
LIST_MODELS = "list_models"
GET_MODEL = "get_model"
LIST_MODEL_VERSIONS = "list_model_versions"


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


def _job_target(job: Dict[str, Any]) -> TargetId:
    model = job.get("model")
    return TargetId(model) if model else UNKNOWN_TARGET


class ResilientClient:
    """Generation API client with retries, error classification and monitoring."""

    def __init__(
        self,
        transport: GenerationApi,
        retry_engine: Optional[RetryEngine] = None,
        monitor: Optional[PerformanceMonitor] = None,
        policies: Optional[Dict[str, RetryPolicy]] = None,
        classifier: Optional[ErrorClassifier] = None,
    ):
        """Initializes the ResilientClient.

        Args:
            transport: Performs the actual API requests.
            retry_engine: Engine used for every call; a default one is built if None.
            monitor: Optional PerformanceMonitor receiving one metric per call.
            policies: Retry policy per category ('create', 'read', 'cancel');
                missing categories use the built-in policies.
            classifier: Classifies terminal failures.
        """
        self.transport = transport
        self.classifier = classifier or ErrorClassifier()
        self.retry_engine = retry_engine or RetryEngine(classifier=self.classifier)
        self.monitor = monitor
        self.policies: Dict[str, RetryPolicy] = {**OPERATION_POLICIES, **(policies or {})}

    def has_context(self) -> bool:
        """Whether a PerformanceMonitor is attached."""
        return self.monitor is not None

    def with_context(self, monitor: PerformanceMonitor) -> "ResilientClient":
        """Returns a new client bound to ``monitor``; this client is left unchanged."""
        return ResilientClient(
            transport=self.transport,
            retry_engine=self.retry_engine,
            monitor=monitor,
            policies=dict(self.policies),
            classifier=self.classifier,
        )

    def get_transport(self) -> GenerationApi:
        return self.transport

    async def aclose(self) -> None:
        await self.transport.aclose()

    # --- Internals ---

    async def _execute(self, operation: str, category: str, call: Callable[[], Awaitable[Any]]) -> Any:
        return await self.retry_engine.execute(call, policy=self.policies[category], operation_name=operation)

    async def _record_success(
        self, target_id: TargetId, operation: str, start: float, context: MetricContext
    ) -> None:
        if self.monitor is None:
            return
        try:
            await self.monitor.record_success(target_id, operation, _elapsed_ms(start), context)
        except Exception as e:
            logger.warning(f"Failed to record success for {target_id}/{operation}: {e}", exc_info=True)

    async def _record_failure(
        self, target_id: TargetId, operation: str, error: Exception, start: float, context: MetricContext
    ) -> None:
        if self.monitor is None:
            return
        try:
            await self.monitor.record_failure(target_id, operation, error, _elapsed_ms(start), context)
        except Exception as e:
            logger.warning(f"Failed to record failure for {target_id}/{operation}: {e}", exc_info=True)

    def _fail(self, operation: str, error: Exception) -> ClassifiedError:
        classified = self.classifier.classify(error)
        logger.error(
            f"{operation} failed: kind={classified.kind.value} status={classified.status_code} "
            f"retryable={classified.retryable}: {error}"
        )
        return classified

    # --- Operations ---

    async def create_job(
        self,
        model: str,
        input: Dict[str, Any],
        webhook: Optional[str] = None,
        webhook_events_filter: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Starts a generation job.

        Args:
            model: 'owner/name' or 'owner/name:version'; also the metric target.
            input: Model inputs. Only the key names are recorded.
            webhook: Optional URL notified as the job progresses.
            webhook_events_filter: Optional subset of webhook events.

        Returns:
            The job as returned by the API.

        Raises:
            ClassifiedError: If the call failed for good.
        """
        target = TargetId(model)
        context: MetricContext = {"input_keys": sorted(input or {}), "has_webhook": bool(webhook)}
        start = time.perf_counter()
        try:
            job = await self._execute(
                CREATE_PREDICTION,
                "create",
                lambda: self.transport.create_job(model, input, webhook, webhook_events_filter),
            )
        except Exception as e:
            await self._record_failure(target, CREATE_PREDICTION, e, start, context)
            raise self._fail(CREATE_PREDICTION, e) from e

        context["job_id"] = job.get("id")
        await self._record_success(target, CREATE_PREDICTION, start, context)
        logger.info(f"Created job {job.get('id')} for {model}")
        return job

    async def get_job(self, job_id: JobId) -> Dict[str, Any]:
        """Fetches a job; the metric target is the job's model."""
        context: MetricContext = {"job_id": job_id}
        start = time.perf_counter()
        try:
            job = await self._execute(GET_PREDICTION, "read", lambda: self.transport.get_job(job_id))
        except Exception as e:
            await self._record_failure(UNKNOWN_TARGET, GET_PREDICTION, e, start, context)
            raise self._fail(GET_PREDICTION, e) from e

        context["status"] = job.get("status")
        await self._record_success(_job_target(job), GET_PREDICTION, start, context)
        return job

    async def cancel_job(self, job_id: JobId) -> Dict[str, Any]:
        context: MetricContext = {"job_id": job_id}
        start = time.perf_counter()
        try:
            job = await self._execute(CANCEL_PREDICTION, "cancel", lambda: self.transport.cancel_job(job_id))
        except Exception as e:
            await self._record_failure(UNKNOWN_TARGET, CANCEL_PREDICTION, e, start, context)
            raise self._fail(CANCEL_PREDICTION, e) from e

        context["status"] = job.get("status")
        await self._record_success(_job_target(job), CANCEL_PREDICTION, start, context)
        logger.info(f"Cancelled job {job_id}")
        return job

    async def list_capabilities(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        """Lists one page of available models, recorded against the 'system' target."""
        context: MetricContext = {"cursor": cursor}
        start = time.perf_counter()
        try:
            page = await self._execute(LIST_MODELS, "read", lambda: self.transport.list_models(cursor))
        except Exception as e:
            await self._record_failure(SYSTEM_TARGET, LIST_MODELS, e, start, context)
            raise self._fail(LIST_MODELS, e) from e

        context["result_count"] = len(page.get("results") or [])
        await self._record_success(SYSTEM_TARGET, LIST_MODELS, start, context)
        return page

    async def get_model(self, owner: str, name: str) -> Dict[str, Any]:
        target = TargetId(f"{owner}/{name}")
        context: MetricContext = {"owner": owner, "name": name}
        start = time.perf_counter()
        try:
            model = await self._execute(GET_MODEL, "read", lambda: self.transport.get_model(owner, name))
        except Exception as e:
            await self._record_failure(target, GET_MODEL, e, start, context)
            raise self._fail(GET_MODEL, e) from e

        context["visibility"] = model.get("visibility")
        await self._record_success(target, GET_MODEL, start, context)
        return model

    async def list_model_versions(self, owner: str, name: str, cursor: Optional[str] = None) -> Dict[str, Any]:
        target = TargetId(f"{owner}/{name}")
        context: MetricContext = {"owner": owner, "name": name, "cursor": cursor}
        start = time.perf_counter()
        try:
            page = await self._execute(
                LIST_MODEL_VERSIONS,
                "read",
                lambda: self.transport.list_model_versions(owner, name, cursor),
            )
        except Exception as e:
            await self._record_failure(target, LIST_MODEL_VERSIONS, e, start, context)
            raise self._fail(LIST_MODEL_VERSIONS, e) from e

        context["result_count"] = len(page.get("results") or [])
        await self._record_success(target, LIST_MODEL_VERSIONS, start, context)
        return page


def create_client(
    api_token: Optional[str] = None,
    monitor: Optional[PerformanceMonitor] = None,
    retry_engine: Optional[RetryEngine] = None,
) -> ResilientClient:
    """Builds a ResilientClient over HTTP from configuration.

    Raises:
        ValueError: If no API token is passed or configured.
    """
    token = api_token or settings.get_api_token()
    if not token:
        raise ValueError("Generation API token is required")
    transport = HttpGenerationApi(
        api_token=token,
        base_url=settings.get_api_base_url(),
        timeout=settings.get_api_timeout(),
    )
    policies = {category: settings.get_retry_policy(category) for category in OPERATION_POLICIES}
    return ResilientClient(transport, retry_engine=retry_engine, monitor=monitor, policies=policies)
