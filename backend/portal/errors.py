"""Domain error taxonomy.

Services raise these exceptions; `main.py` registers handlers that turn
them into the `{success: false, message}` response envelope.
"""

from typing import Any, Dict, List, Optional


class PortalError(Exception):
    """Base class for errors that map onto an HTTP status."""
    status_code = 500
    default_message = "Server Error"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Dict[str, Any]]] = None):
        self.message = message or self.default_message
        self.errors = errors
        super().__init__(self.message)


class Unauthenticated(PortalError):
    status_code = 401
    default_message = "Not authorized to access this route"


class Forbidden(PortalError):
    status_code = 403
    default_message = "Not authorized to access this resource"


class NotFound(PortalError):
    status_code = 404
    default_message = "Resource not found"


class Conflict(PortalError):
    status_code = 400
    default_message = "Duplicate field value entered"


class InvalidArgument(PortalError):
    status_code = 400
    default_message = "Invalid request"


class InvalidToken(PortalError):
    status_code = 400
    default_message = "Invalid or expired token"
