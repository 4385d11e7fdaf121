"""ADSYNC — Abstract Platform Client."""

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, List

from adsync.models.metric_models import Platform


class PlatformClient(ABC):
    """Abstract base for advertising platform clients.

    Credentials are handed in by the caller; a client never stores or
    rotates them. Failures are raised as classified PlatformError
    subclasses and are not retried here.
    """

    platform: Platform

    @abstractmethod
    async def get_campaign_data(self, start: date, end: date) -> List[Dict[str, Any]]:
        """Fetch campaign-level raw rows for the inclusive range.

        Returns an empty list when no campaigns ran in the range.
        """
        ...

    async def close(self) -> None:
        """Release the underlying HTTP client, if any."""
