"""
Error taxonomy for the connector.

Every failure the request pipeline can produce is a ConnectorError subclass.
Each carries a human-readable message (shown to the client in the failure
envelope), a stable machine-readable code and the HTTP status the transport
layer answers with.

Two families live here:
- Credential and request errors raised by the authorization pipeline
  (MissingCredential ... MissingRequiredParameter)
- Domain errors raised by the data accessor (DataAccessError and subclasses)

PersistenceError and ConfigurationError are raised by the credential
machinery itself and must reach administrative callers unchanged.
"""


class ConnectorError(Exception):
    """
    Base class for all connector failures.

    Attributes:
        message: Human-readable error description (returned to the client)
        code: Stable identifier for programmatic handling
        status_code: HTTP status code to return
    """

    code = "CONNECTOR_ERROR"
    status_code = 500
    default_message = "An error occurred."

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


# ---------------------------------------------------------------------------
# Credential errors
# ---------------------------------------------------------------------------


class MissingCredential(ConnectorError):
    code = "MISSING_CREDENTIAL"
    status_code = 401
    default_message = "No credential specified."


class UnknownCredential(ConnectorError):
    code = "UNKNOWN_CREDENTIAL"
    status_code = 401
    default_message = "Invalid credential."


class MalformedCredential(ConnectorError):
    code = "MALFORMED_CREDENTIAL"
    status_code = 401
    default_message = "Credential could not be decoded."


class OperationNotPermitted(ConnectorError):
    code = "OPERATION_NOT_PERMITTED"
    status_code = 403
    default_message = "Operation not allowed by this credential."


class TenantNotPermitted(ConnectorError):
    code = "TENANT_NOT_PERMITTED"
    status_code = 403
    default_message = "Guild not allowed by this credential."


# ---------------------------------------------------------------------------
# Request errors
# ---------------------------------------------------------------------------


class UnknownOperation(ConnectorError):
    code = "UNKNOWN_OPERATION"
    status_code = 404
    default_message = "Unknown operation."


class MissingRequiredParameter(ConnectorError):
    code = "MISSING_REQUIRED_PARAMETER"
    status_code = 400
    default_message = "Invalid properties specified."


# ---------------------------------------------------------------------------
# Infrastructure errors
# ---------------------------------------------------------------------------


class PersistenceError(ConnectorError):
    code = "PERSISTENCE_ERROR"
    status_code = 500
    default_message = "Credential store could not be accessed."


class ConfigurationError(ConnectorError):
    code = "CONFIGURATION_ERROR"
    status_code = 500
    default_message = "Server is not configured correctly."


# ---------------------------------------------------------------------------
# Data accessor errors
# ---------------------------------------------------------------------------


class DataAccessError(ConnectorError):
    code = "DATA_ACCESS_ERROR"
    status_code = 500


class NotFound(DataAccessError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Not found."


class InvalidParameter(DataAccessError):
    code = "INVALID_PARAMETER"
    status_code = 400
    default_message = "Invalid parameter value."


class OperationDisabled(DataAccessError):
    code = "OPERATION_DISABLED"
    status_code = 403
    default_message = "Endpoint disabled."


class AccessorNotInitialized(DataAccessError):
    code = "NOT_INITIALIZED"
    status_code = 503
    default_message = "Connector not initialized."


def _all_subclasses(cls: type) -> list[type]:
    found = []
    for sub in cls.__subclasses__():
        found.append(sub)
        found.extend(_all_subclasses(sub))
    return found


_STATUS_BY_CODE: dict[str, int] = {
    cls.code: cls.status_code for cls in [ConnectorError, *_all_subclasses(ConnectorError)]
}


def status_for_code(code: str | None) -> int:
    """Map a failure envelope's code to the HTTP status to answer with."""
    return _STATUS_BY_CODE.get(code or "", 500)
