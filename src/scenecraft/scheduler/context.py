from dataclasses import dataclass, field
from time import time
import logging
import uuid

from ..utils.log_config import CorrelationAdapter


@dataclass
class TickContext:
    """Per-tick values handed explicitly to every stage handler."""

    stage: str
    correlation_id: str
    log: logging.LoggerAdapter = field(repr=False)

    @classmethod
    def new(cls, stage: str, logger: logging.Logger) -> "TickContext":
        correlation_id = f"{stage}-{int(time())}-{uuid.uuid4().hex[:6]}"
        return cls(
            stage=stage,
            correlation_id=correlation_id,
            log=CorrelationAdapter(logger, {"correlation_id": correlation_id, "stage": stage}),
        )
