"""Error taxonomy shared by the verifier, stores, dispatcher and HTTP routes.

Only the dispatcher and the route modules turn these into wire shapes
(JSON-RPC error objects, OAuth error bodies, execution error events,
re-rendered forms).
"""

from mcp.types import INTERNAL_ERROR, METHOD_NOT_FOUND, PARSE_ERROR


class ServiceError(Exception):
    """Base class for every failure the server reports to a caller."""

    jsonrpc_code: int = INTERNAL_ERROR
    oauth_error: str = "server_error"
    execution_error: str = "EXECUTION_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


# ============== Protocol ==============

class ParseError(ServiceError):
    jsonrpc_code = PARSE_ERROR


class MethodNotFound(ServiceError):
    jsonrpc_code = METHOD_NOT_FOUND


# ============== Authentication ==============

class InvalidCredentials(ServiceError):
    """The identity endpoint rejected an email/password pair."""


class InvalidToken(ServiceError):
    """The profile endpoint rejected a bearer token."""


class AuthenticationFailed(ServiceError):
    """A bearer credential failed validation while creating a session."""


class AuthenticationRequired(ServiceError):
    """No session, or the session is unknown or expired."""

    execution_error = "AUTH_REQUIRED"


class SessionExpired(AuthenticationRequired):
    """The session exists but its credential no longer validates upstream."""

    execution_error = "SESSION_EXPIRED"


# ============== OAuth ==============

class InvalidGrant(ServiceError):
    oauth_error = "invalid_grant"


class UnsupportedGrantType(ServiceError):
    oauth_error = "unsupported_grant_type"


class UnsupportedResponseType(ServiceError):
    oauth_error = "unsupported_response_type"


class InvalidRequest(ServiceError):
    oauth_error = "invalid_request"


# ============== Upstream ==============

class UpstreamUnavailable(ServiceError):
    """Network failure or timeout talking to the upstream API."""


class MalformedUpstreamResponse(ServiceError):
    """A success response without the fields we need."""


class UpstreamError(ServiceError):
    """The upstream API rejected a primary operation."""

    def __init__(self, message: str = "", status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


# ============== Tools ==============

class UnknownTool(ServiceError):
    execution_error = "UNKNOWN_TOOL"


class ValidationError(ServiceError):
    """Tool arguments do not match the tool's input schema."""

    def __init__(self, errors: list[str]):
        super().__init__(f"Validation errors: {', '.join(errors)}")
        self.errors = errors
