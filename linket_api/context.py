"""Request context management for observability.

Context variables carry request-scoped identifiers across async boundaries
so the JSON formatter can attach them to every log line.
"""

from contextvars import ContextVar

# Request ID - unique per HTTP request
request_id_var: ContextVar[str] = ContextVar("request_id", default="")

# Authenticated account, when the request carries a session
user_id_var: ContextVar[str] = ContextVar("user_id", default="")

# Hardware tag currently being resolved or claimed
tag_id_var: ContextVar[str] = ContextVar("tag_id", default="")
