"""Canonical logging field names for cross-component consistency.

These constants define a stable key set for structured logs and context
propagation. Keeping names centralized prevents accidental drift between the
adapter, session and storage layers.
"""

TIMESTAMP = "timestamp"
LEVEL = "level"
LOGGER = "logger"
MESSAGE = "message"
EVENT = "event"

# Public API invocation fields.
COMPONENT_ID = "component_id"
API_NAME = "api_name"
PUBLIC_API_INVOCATION_EVENT = "public_api_invocation"
PUBLIC_API_COMPLETION_EVENT = "public_api_completion"
PUBLIC_API_INSTRUMENTATION_FAILURE_EVENT = "public_api_instrumentation_failure"
SUCCESS = "success"
DURATION_MS = "duration_ms"
ERRORS = "errors"
STAGE = "stage"
CONCERN = "concern"

# Repository identity fields.
OBJECT_ID = "object_id"
BACKEND_PID = "backend_pid"
PAYLOAD_ID = "payload_id"
DATASTREAM_ID = "datastream_id"

# Common service-level fields.
SERVICE = "service"
ENVIRONMENT = "environment"
