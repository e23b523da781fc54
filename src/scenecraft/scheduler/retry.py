from abc import ABC, abstractmethod
from dataclasses import dataclass
from time import monotonic
from typing import Dict, Optional

from ..config import RetryConfig


class RetryPolicy(ABC):
    """Decides whether a document that failed earlier is attempted on this tick."""

    @abstractmethod
    def should_attempt(self, document_id: str, now: Optional[float] = None) -> bool:
        pass

    def record_failure(self, document_id: str, now: Optional[float] = None) -> None:
        pass

    def record_success(self, document_id: str) -> None:
        pass


class RetryForever(RetryPolicy):
    """Every tick retries every document; no counter, no backoff."""

    def should_attempt(self, document_id: str, now: Optional[float] = None) -> bool:
        return True


@dataclass
class _FailureState:
    failures: int
    next_attempt: float


class ExponentialBackoff(RetryPolicy):
    def __init__(self, base_seconds: float = 30.0, max_seconds: float = 3600.0):
        self.base_seconds = base_seconds
        self.max_seconds = max_seconds
        self._state: Dict[str, _FailureState] = {}

    def delay_for(self, failures: int) -> float:
        return min(self.max_seconds, self.base_seconds * (2 ** max(0, failures - 1)))

    def should_attempt(self, document_id: str, now: Optional[float] = None) -> bool:
        state = self._state.get(document_id)
        if state is None:
            return True
        now = monotonic() if now is None else now
        return now >= state.next_attempt

    def record_failure(self, document_id: str, now: Optional[float] = None) -> None:
        now = monotonic() if now is None else now
        failures = self._state[document_id].failures + 1 if document_id in self._state else 1
        self._state[document_id] = _FailureState(failures, now + self.delay_for(failures))

    def record_success(self, document_id: str) -> None:
        self._state.pop(document_id, None)

    def failures(self, document_id: str) -> int:
        state = self._state.get(document_id)
        return state.failures if state else 0


def policy_from_config(config: RetryConfig) -> RetryPolicy:
    if config.strategy == "backoff":
        return ExponentialBackoff(config.base_seconds, config.max_seconds)
    return RetryForever()
