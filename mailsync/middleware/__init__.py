"""HTTP middleware: request ID and correlation ID.

Applied in create_app(); the last one added is outermost, so RequestIDMiddleware
is added after CorrelationIDMiddleware and runs before it.
"""

from mailsync.middleware.request_context import (
    CorrelationIDMiddleware,
    RequestIDMiddleware,
)

__all__ = ["CorrelationIDMiddleware", "RequestIDMiddleware"]
