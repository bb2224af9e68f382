"""
Call budget for document recognition.

Every attempt to reach an OCR provider (including the mock) spends one call
from a budget shared by all providers. Once the budget is spent, uploads are
reported as recognition failures instead of reaching the provider.
"""
import logging
from collections import Counter
from datetime import datetime
from threading import Lock
from typing import Dict, Optional, Tuple

from intake.config import Config

logger = logging.getLogger(__name__)


class RateLimiter:
    """Shared recognition call budget, counted per OCR provider."""

    def __init__(self, max_total_calls: Optional[int] = None, enabled: Optional[bool] = None):
        """
        Args:
            max_total_calls: Recognition calls allowed for the life of the process
                (defaults to Config.MAX_TOTAL_CALLS)
            enabled: Whether the budget is enforced (defaults to Config.ENABLE_RATE_LIMITING)
        """
        self.max_total_calls = max_total_calls or Config.MAX_TOTAL_CALLS
        self.enabled = Config.ENABLE_RATE_LIMITING if enabled is None else enabled
        self.calls_by_provider: Counter = Counter()
        self.lock = Lock()
        self.started_at = datetime.now()

    def can_make_call(self, provider: str) -> Tuple[bool, str]:
        """
        Check whether another recognition call fits in the budget.

        Args:
            provider: Recognition client's service name (e.g. 'mistral_ocr')

        Returns:
            Tuple of (allowed, reason); reason is shown to the user when refused
        """
        if not self.enabled:
            return True, "OK"

        with self.lock:
            spent = sum(self.calls_by_provider.values())

        if spent >= self.max_total_calls:
            return False, (
                f"Document recognition limit reached: {spent}/{self.max_total_calls} "
                f"documents processed"
            )
        return True, "OK"

    def record_call(self, provider: str):
        """Spend one call, whether or not the provider answered."""
        with self.lock:
            self.calls_by_provider[provider] += 1
            spent = sum(self.calls_by_provider.values())
        logger.info(f"Recognition call via {provider}: {spent}/{self.max_total_calls} used")

    def get_stats(self) -> Dict:
        """Budget usage for the /api/rate-limit endpoint."""
        with self.lock:
            spent = sum(self.calls_by_provider.values())
            return {
                'total_calls': spent,
                'max_calls': self.max_total_calls,
                'remaining_calls': max(0, self.max_total_calls - spent),
                'calls_by_service': dict(self.calls_by_provider),
                'uptime_seconds': (datetime.now() - self.started_at).total_seconds()
            }
