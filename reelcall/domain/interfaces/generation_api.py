"""Interface for the external video-generation API.

Implementations perform exactly one request per call. Retries, timing and
monitoring are layered on top by ResilientClient. Failures are raised as-is;
only their status code, error code and message matter to the caller.
"""

import abc
from typing import Any, Dict, List, Optional

from ..models.common import JobId


class GenerationApi(abc.ABC):
    """Abstract Base Class for generation API transports."""

    @abc.abstractmethod
    async def create_job(
        self,
        model: str,
        input: Dict[str, Any],
        webhook: Optional[str] = None,
        webhook_events_filter: Optional[List[str]] = None,
    ) -> Dict[str, Any]:
        """Starts a generation job (prediction) and returns its initial state.

        Args:
            model: 'owner/name' or 'owner/name:version'.
            input: Model input parameters.
            webhook: Optional URL notified as the job progresses.
            webhook_events_filter: Optional subset of events to send to the webhook.
        """
        pass

    @abc.abstractmethod
    async def get_job(self, job_id: JobId) -> Dict[str, Any]:
        """Fetches the current state of a job."""
        pass

    @abc.abstractmethod
    async def cancel_job(self, job_id: JobId) -> Dict[str, Any]:
        """Cancels a running job and returns its final state."""
        pass

    @abc.abstractmethod
    async def list_models(self, cursor: Optional[str] = None) -> Dict[str, Any]:
        """Lists one page of available models ('results', 'next', 'previous')."""
        pass

    @abc.abstractmethod
    async def get_model(self, owner: str, name: str) -> Dict[str, Any]:
        """Describes one model."""
        pass

    @abc.abstractmethod
    async def list_model_versions(self, owner: str, name: str, cursor: Optional[str] = None) -> Dict[str, Any]:
        """Lists one page of a model's versions."""
        pass

    async def aclose(self) -> None:
        """Releases transport resources. Default: nothing to release."""
        return None
