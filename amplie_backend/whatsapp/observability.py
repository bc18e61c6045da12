from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional


@dataclass(frozen=True)
class LogContext:
    tenant_id: Optional[str] = None
    instance_name: Optional[str] = None
    operation: Optional[str] = None
    correlation_id: Optional[str] = None


class Observability:
    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def info(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        if self._logger.isEnabledFor(logging.INFO):
            self._logger.info(self._format(event, ctx=ctx, fields=fields))

    def debug(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        if self._logger.isEnabledFor(logging.DEBUG):
            self._logger.debug(self._format(event, ctx=ctx, fields=fields))

    def warning(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.warning(self._format(event, ctx=ctx, fields=fields))

    def error(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.error(self._format(event, ctx=ctx, fields=fields))

    def exception(self, event: str, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        self._logger.exception(self._format(event, ctx=ctx, fields=fields))

    def failure(self, event: str, err: Exception, *, ctx: Optional[LogContext] = None, **fields: Any) -> None:
        """Structured entry for an operation that failed with a domain error."""
        code = getattr(err, "code", None) or type(err).__name__
        transient = getattr(err, "transient", None)
        self._logger.warning(self._format(event, ctx=ctx, fields={**fields, "code": code, "transient": transient, "error": str(err)}))

    def _format(self, event: str, *, ctx: Optional[LogContext], fields: Mapping[str, Any]) -> str:
        parts: list[str] = [event]
        if ctx:
            if ctx.tenant_id:
                parts.append(f"tenant={ctx.tenant_id}")
            if ctx.instance_name:
                parts.append(f"instance={ctx.instance_name}")
            if ctx.operation:
                parts.append(f"op={ctx.operation}")
            if ctx.correlation_id:
                parts.append(f"corr={ctx.correlation_id}")
        for k, v in fields.items():
            if v is None:
                continue
            parts.append(f"{k}={v}")
        return " ".join(parts)
