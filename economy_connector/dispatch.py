"""
Per-request pipeline: credential check, parameter check, data access.

For every incoming call the Dispatcher:

    1. Requires a `credential` parameter
    2. Validates the credential for the operation (and for the request's
       guildId, when it carries one)
    3. Checks the operation's required parameters
    4. Runs the operation on the data accessor
    5. Wraps the outcome in a response envelope

Each step short-circuits: a rejected credential never reaches parameter
validation and a malformed request never reaches the database.

Whatever happens, handle() returns an envelope. Success envelopes carry the
result fields plus "success": true; failure envelopes carry "success": false,
an "error" message and a machine-readable "code".
"""

import logging
import uuid
from collections.abc import Mapping
from typing import Any, Protocol

from economy_connector.credentials import CredentialValidator
from economy_connector.errors import ConnectorError, MissingCredential
from economy_connector.schemas import validate_request

logger = logging.getLogger(__name__)

CREDENTIAL_FIELD = "credential"
TENANT_FIELD = "guildId"

GENERIC_ERROR = "An error occurred."


class Accessor(Protocol):
    async def call(self, operation: str, params: Mapping[str, Any]) -> dict[str, Any]: ...


def success(data: Mapping[str, Any] | None = None) -> dict[str, Any]:
    envelope = dict(data or {})
    envelope["success"] = True
    return envelope


def failure(error: str | None = None, code: str = ConnectorError.code) -> dict[str, Any]:
    return {"success": False, "error": error or GENERIC_ERROR, "code": code}


class Dispatcher:
    """Runs one request through authorization, validation and data access."""

    def __init__(self, validator: CredentialValidator, accessor: Accessor):
        self.validator = validator
        self.accessor = accessor

    async def handle(self, operation: str, params: Mapping[str, Any]) -> dict[str, Any]:
        """
        Process a single request and return its response envelope.

        Never raises for request-level failures. Task cancellation is not
        intercepted, so a cancelled request stops before touching the data.
        """
        request_id = str(uuid.uuid4())[:8]
        try:
            return success(await self._run(request_id, operation, params))
        except ConnectorError as e:
            return failure(e.message, e.code)
        except Exception:
            logger.exception(
                "Unhandled error while processing request",
                extra={"log_data": {"request_id": request_id, "operation": operation}},
            )
            return failure()

    async def _run(
        self, request_id: str, operation: str, params: Mapping[str, Any]
    ) -> dict[str, Any]:
        # Step 1: Credential presence
        credential = params.get(CREDENTIAL_FIELD)
        if not credential:
            self._log_rejection(request_id, operation, MissingCredential())
            raise MissingCredential()

        # Step 2: Credential validity and scope
        tenant = params.get(TENANT_FIELD)
        try:
            payload = await self.validator.validate(
                str(credential), operation, None if tenant is None else str(tenant)
            )
        except ConnectorError as e:
            self._log_rejection(request_id, operation, e)
            raise

        # Step 3: Required parameters. The credential itself is not an
        # operation parameter and never reaches the accessor.
        request = {key: value for key, value in params.items() if key != CREDENTIAL_FIELD}
        try:
            validated = validate_request(operation, request)
        except ConnectorError as e:
            self._log_rejection(request_id, operation, e, subject=payload.subject_id)
            raise

        logger.info(
            "Request authorized",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "operation": operation,
                    "subject": payload.subject_id,
                    "tenant": payload.tenant_id,
                    "decision": "allowed",
                }
            },
        )

        # Step 4: Data access
        try:
            return await self.accessor.call(operation, validated)
        except ConnectorError as e:
            logger.warning(
                "Operation failed",
                extra={
                    "log_data": {
                        "request_id": request_id,
                        "operation": operation,
                        "subject": payload.subject_id,
                        "code": e.code,
                        "error": e.message,
                    }
                },
            )
            raise

    def _log_rejection(
        self,
        request_id: str,
        operation: str,
        error: ConnectorError,
        subject: str | None = None,
    ) -> None:
        logger.warning(
            "Request rejected",
            extra={
                "log_data": {
                    "request_id": request_id,
                    "operation": operation,
                    "subject": subject,
                    "decision": "rejected",
                    "reason": error.code,
                }
            },
        )
