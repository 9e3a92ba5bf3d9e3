"""Semantic event constants for structured logging.

All log events should use these constants rather than magic strings to ensure
consistency and enable reliable querying and analysis.
"""

# Orchestrator events
RUN_STARTED = "run_started"
RUN_COMPLETED = "run_completed"
RUN_INTERRUPTED = "run_interrupted"
RUN_RESUMED = "run_resumed"
RUN_ABORTED = "run_aborted"
REPLY_READY = "reply_ready"
ORCHESTRATOR_FATAL_ERROR = "orchestrator_fatal_error"
STATE_TRANSITION = "state_transition"
UNKNOWN_STATE = "unknown_state"
ROUTING_DECISION = "routing_decision"
ROUTING_FALLBACK = "routing_fallback"
NODE_STARTED = "node_started"
NODE_ERROR = "node_error"
BUDGET_EXHAUSTED = "budget_exhausted"
HANDOFF = "handoff"

# Planner events
PLANNER_ACTIVATION_DECIDED = "planner_activation_decided"
PLANNER_ACTIVATION_FAILED = "planner_activation_failed"
PLAN_CREATED = "plan_created"
PLAN_VALIDATED = "plan_validated"

# Task events
TASK_CREATED = "task_created"
TASK_BLOCKED = "task_blocked"
TASK_ENDED = "task_ended"
TASK_VERIFIED = "task_verified"
TASK_REJECTED = "task_rejected"
STEP_APPENDED = "step_appended"
WRONG_NUMBER_OF_TOOLS = "wrong_number_of_tools"
INVALID_TOOL_CALLS_RECOVERED = "invalid_tool_calls_recovered"

# Model gateway events
MODEL_CALL_STARTED = "model_call_started"
MODEL_CALL_COMPLETED = "model_call_completed"
MODEL_CALL_ERROR = "model_call_error"
MODEL_CALL_RETRY = "model_call_retry"
USAGE_ESTIMATED = "usage_estimated"
STRUCTURED_OUTPUT_INVALID = "structured_output_invalid"

# Tool execution events
TOOL_CALL_STARTED = "tool_call_started"
TOOL_CALL_COMPLETED = "tool_call_completed"
TOOL_CALL_FAILED = "tool_call_failed"
TOOL_BATCH_TIMEOUT = "tool_batch_timeout"
TOOL_RESULT_SUMMARIZED = "tool_result_summarized"

# Memory events
STM_ITEM_ADDED = "stm_item_added"
STM_OPERATION_FAILED = "stm_operation_failed"
LTM_UPSERT_COMPLETED = "ltm_upsert_completed"
LTM_UPSERT_FAILED = "ltm_upsert_failed"
LTM_SEARCH_COMPLETED = "ltm_search_completed"
MEMORY_CONSOLIDATED = "memory_consolidated"
MEMORY_RETRIEVED = "memory_retrieved"

# Session events
SESSION_CREATED = "session_created"
SESSION_SUSPENDED = "session_suspended"
SESSION_CLOSED = "session_closed"

# Streaming events
STREAM_CHUNK_DROPPED = "stream_chunk_dropped"
