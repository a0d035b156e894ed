"""
HTTP front end for the connector.

Serves one GET route per enabled operation, named after the operation in
lower case, with the request parameters in the query string:

    GET /getbalance?credential=<credential>&userId=123456789012345678

The credential may also be sent as "Authorization: Bearer <credential>";
a credential in the query string takes precedence.

Every response body is an envelope produced by the Dispatcher. Successful
calls answer 200; failures answer with the status matching their error code.

Health and readiness endpoints (for orchestrator probes) are unauthenticated
and expose no data:
- /health: the process is alive
- /ready: the database is open and a credential secret is configured

Running the server:
    python -m economy_connector.server
"""

import contextlib
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.routing import Route

from economy_connector.accessor import DataAccessor, load_bot_credentials
from economy_connector.config import Settings, settings
from economy_connector.credentials import CredentialCipher, CredentialValidator
from economy_connector.dispatch import CREDENTIAL_FIELD, Dispatcher
from economy_connector.errors import status_for_code
from economy_connector.logging_config import configure_logging
from economy_connector.revocation import RevocationStore
from economy_connector.schemas import OPERATION_SCHEMAS

logger = logging.getLogger(__name__)


@dataclass
class Components:
    accessor: DataAccessor
    dispatcher: Dispatcher


def build_components(config: Settings) -> Components:
    """
    Wire the request pipeline from configuration.

    Raises:
        ConfigurationError: If no credential secret is configured or the bot
                            credentials file cannot be read
    """
    store = RevocationStore(config.keys_file)
    cipher = CredentialCipher(config.credential_secret, config.credential_salt)
    accessor = DataAccessor(
        config.database_path,
        disabled_operations=config.disabled_operations(),
        bot_credentials=load_bot_credentials(config.bot_credentials_file),
    )
    dispatcher = Dispatcher(CredentialValidator(cipher, store), accessor)
    return Components(accessor=accessor, dispatcher=dispatcher)


def _bearer_credential(request: Request) -> str | None:
    header = request.headers.get("authorization")
    if not header:
        return None
    parts = header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def _operation_endpoint(dispatcher: Dispatcher, operation: str):
    async def endpoint(request: Request) -> Response:
        params = dict(request.query_params)
        if CREDENTIAL_FIELD not in params:
            bearer = _bearer_credential(request)
            if bearer:
                params[CREDENTIAL_FIELD] = bearer

        envelope = await dispatcher.handle(operation, params)
        status = 200 if envelope["success"] else status_for_code(envelope.get("code"))
        return JSONResponse(envelope, status_code=status)

    endpoint.__name__ = operation
    return endpoint


def create_app(components: Components) -> Starlette:
    """Build the Starlette application around an already-wired pipeline."""
    accessor = components.accessor
    active_operations = [name for name in accessor.operations if name in OPERATION_SCHEMAS]

    async def health_check(request: Request) -> Response:
        """Liveness probe: is the server process alive and responsive?"""
        return JSONResponse({"status": "healthy"})

    async def readiness_check(request: Request) -> Response:
        """Readiness probe: can this instance serve requests?"""
        if not accessor.initialized:
            return JSONResponse(
                {"status": "not_ready", "reason": "database not initialized"},
                status_code=503,
            )
        return JSONResponse({"status": "ready"})

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        await accessor.initialize()
        logger.info(
            "Connector ready",
            extra={"log_data": {"active_operations": active_operations}},
        )
        try:
            yield
        finally:
            await accessor.close()

    routes = [
        Route("/health", health_check, methods=["GET"]),
        Route("/ready", readiness_check, methods=["GET"]),
    ]
    routes.extend(
        Route(
            f"/{name.lower()}",
            _operation_endpoint(components.dispatcher, name),
            methods=["GET"],
        )
        for name in active_operations
    )

    return Starlette(routes=routes, lifespan=lifespan)


def main() -> None:
    configure_logging(settings.log_level)
    app = create_app(build_components(settings))
    logger.info(
        "Starting connector on %s:%d",
        settings.host,
        settings.port,
    )
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    main()
