"""Trace context for run correlation.

Lightweight trace propagation compatible with OpenTelemetry concepts but
without requiring the OTel SDK.
"""

import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class TraceContext:
    """Lightweight trace context for run correlation.

    Every orchestrator run gets one trace; each model call and tool call
    opens a span under it.

    Attributes:
        trace_id: Unique identifier for the trace (UUID string).
        parent_span_id: Optional parent span ID for nested operations.
        session_id: Session the trace belongs to, if any.
    """

    trace_id: str
    parent_span_id: str | None = None
    session_id: str | None = None

    @classmethod
    def new_trace(cls, session_id: str | None = None) -> "TraceContext":
        """Start a new trace.

        Args:
            session_id: Optional session to attach to the trace.

        Returns:
            A new TraceContext with a generated trace_id and no parent span.
        """
        return cls(trace_id=str(uuid.uuid4()), session_id=session_id)

    def new_span(self) -> tuple["TraceContext", str]:
        """Create a child span within this trace.

        Returns:
            A tuple of (new TraceContext with this span as parent, new span_id).
        """
        span_id = str(uuid.uuid4())
        return (
            TraceContext(
                trace_id=self.trace_id, parent_span_id=span_id, session_id=self.session_id
            ),
            span_id,
        )
