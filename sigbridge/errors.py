"""
Custom Exceptions for the SigBridge connector

Define custom exception classes for more precise error handling
and consistent error responses across the connector and its API.
"""


class ConnectorError(Exception):
    """Base exception for all connector-specific errors"""
    def __init__(self, message: str, error_code: str = "UNKNOWN_ERROR"):
        self.message = message
        self.error_code = error_code
        super().__init__(message)


class ValidationError(ConnectorError):
    """Raised when a rule or credential fails local validation (before any network call)"""
    def __init__(self, message: str, errors: list[str] | None = None):
        error_code = "VALIDATION_ERROR"
        self.errors = errors or [message]
        super().__init__(message, error_code)


class AuthenticationError(ConnectorError):
    """Raised when the identity provider rejects the client-credentials exchange"""
    def __init__(self, message: str, tenant_id: str | None = None, error_code: str = "AUTHENTICATION_ERROR"):
        self.tenant_id = tenant_id
        super().__init__(message, error_code)


class AuthorizationError(ConnectorError):
    """Raised when a valid token is not allowed to perform the operation"""
    def __init__(self, message: str, resource_type: str | None = None):
        error_code = "AUTHORIZATION_ERROR"
        self.resource_type = resource_type
        super().__init__(message, error_code)


class UnsupportedOperationError(ConnectorError):
    """Raised when the remote surface cannot perform a rule mutation; triggers script fallback"""
    def __init__(self, message: str, operation: str | None = None):
        error_code = "UNSUPPORTED_OPERATION"
        self.operation = operation
        super().__init__(message, error_code)


class NetworkError(ConnectorError):
    """Raised on timeouts and connection failures; no remote state was changed"""
    def __init__(self, message: str, error_code: str = "NETWORK_ERROR"):
        super().__init__(message, error_code)


class TokenEndpointUnreachableError(NetworkError, AuthenticationError):
    """Raised when the token endpoint cannot be reached; counts as both an auth and a network failure"""
    def __init__(self, message: str, tenant_id: str | None = None):
        self.tenant_id = tenant_id
        # Both parents chain through super(); initialise the shared base directly
        ConnectorError.__init__(self, message, "TOKEN_ENDPOINT_UNREACHABLE")


class RemoteStateError(ConnectorError):
    """Raised when remote state is ambiguous, e.g. several rules share one name"""
    def __init__(self, message: str, rule_name: str | None = None):
        error_code = "REMOTE_STATE_ERROR"
        self.rule_name = rule_name
        super().__init__(message, error_code)


class RemoteAPIError(ConnectorError):
    """Raised for any other non-success response from the remote API"""
    def __init__(self, message: str, status_code: int | None = None):
        error_code = "REMOTE_API_ERROR"
        self.status_code = status_code
        super().__init__(message, error_code)


class ConnectorNotConfiguredError(ConnectorError):
    """Raised when an organization has no usable tenant credential"""
    def __init__(self, message: str, org_id: str | None = None):
        error_code = "CONNECTOR_NOT_CONFIGURED"
        self.org_id = org_id
        super().__init__(message, error_code)


def error_to_dict(error: ConnectorError) -> dict:
    """
    Convert an exception to a dictionary for API error responses

    Args:
        error: ConnectorError instance

    Returns:
        Dictionary representation of the error
    """
    error_dict = {
        "error": error.error_code,
        "message": error.message
    }

    # Add optional metadata
    for attr in ['errors', 'tenant_id', 'resource_type', 'operation', 'rule_name', 'status_code', 'org_id']:
        value = getattr(error, attr, None)
        if value is not None:
            error_dict[attr] = value

    return error_dict
