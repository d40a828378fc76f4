"""Log context propagated through contextvars (safe across asyncio tasks)."""

from contextvars import ContextVar
from typing import Any, Dict, Optional

_stage: ContextVar[Optional[str]] = ContextVar("stage", default=None)
_worker_id: ContextVar[Optional[str]] = ContextVar("worker_id", default=None)
_kafka: ContextVar[Dict[str, Any]] = ContextVar("kafka", default={})


def set_log_context(
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
) -> None:
    """Set process/task level log context. None leaves a field unchanged."""
    if stage is not None:
        _stage.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)


def get_log_context() -> Dict[str, Any]:
    """Current log context, including Kafka fields when inside KafkaLogContext."""
    ctx: Dict[str, Any] = {
        "stage": _stage.get(),
        "worker_id": _worker_id.get(),
    }
    ctx.update(_kafka.get())
    return ctx


def clear_log_context() -> None:
    _stage.set(None)
    _worker_id.set(None)
    _kafka.set({})


class KafkaLogContext:
    """
    Attach Kafka record coordinates to every log line emitted inside the block.

    Example:
        with KafkaLogContext(topic="orders", partition=0, offset=42, key="o1"):
            logger.info("Processing order")
    """

    def __init__(self, **fields: Any):
        self._fields = {k: v for k, v in fields.items() if v is not None}
        self._token = None

    def __enter__(self) -> "KafkaLogContext":
        merged = dict(_kafka.get())
        merged.update(self._fields)
        self._token = _kafka.set(merged)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _kafka.reset(self._token)
            self._token = None
