"""FastAPI application factory and route setup for s3authgate.

The application is a forward-auth gate: every request outside the configured
skip paths must carry a valid SigV4 Authorization header. Rejected requests
get an S3 XML error; accepted requests reach the route handlers with the
matched credential on ``request.state.credential``.
"""

import logging
import secrets
import time

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

import s3authgate.metrics as metrics
from s3authgate.auth import SigV4Verifier, request_path
from s3authgate.config import GateConfig
from s3authgate.errors import NotAuthenticatedError, SigV4Error
from s3authgate.xml_utils import render_error, xml_response

logger = logging.getLogger(__name__)

# Paths to suppress from per-request logging
_QUIET_PATHS = {"/metrics", "/health", "/healthz"}

# Module-level singleton so multiple create_app() calls (e.g. in tests)
# don't re-register the same collectors in the global registry.
_instrumentator = None


def _get_instrumentator() -> Instrumentator:
    global _instrumentator
    if _instrumentator is None:
        _instrumentator = Instrumentator(excluded_handlers=["/metrics"])
    return _instrumentator


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app(config: GateConfig, verifier: SigV4Verifier | None = None) -> FastAPI:
    """Create and configure the s3authgate FastAPI application.

    Args:
        config: The loaded gate configuration.
        verifier: Verifier to use instead of one built from ``config.auth``
            (tests inject one with a fixed clock).

    Returns:
        A configured FastAPI application ready to run.
    """
    app = FastAPI(
        title="s3authgate",
        version="0.1.0",
        openapi_url=None,
        docs_url=None,
        redoc_url=None,
    )
    app.state.config = config
    app.state.verifier = verifier or SigV4Verifier(
        credentials=config.auth.to_credentials(),
        max_skew=config.auth.max_skew,
        header_name=config.auth.header_name,
    )
    logger.info(
        "SigV4 verifier ready with %d credential(s)", len(app.state.verifier.credentials)
    )

    _register_middleware(app)

    # /metrics must be registered before the catch-all route.
    if config.observability.metrics:
        metrics.init_metrics()
        _get_instrumentator().instrument(app, metric_namespace="s3authgate").expose(
            app, endpoint="/metrics"
        )

    _setup_routes(app)

    return app


# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------


def _error_response(request: Request, exc: SigV4Error) -> Response:
    """Render a verification error as an S3 XML error response.

    HEAD requests must not have a body.
    """
    if request.method == "HEAD":
        return Response(status_code=exc.http_status)
    body = render_error(
        code=exc.code,
        message=exc.message,
        resource=request.scope["path"],
        request_id=getattr(request.state, "request_id", ""),
        extra_fields=exc.extra_fields,
    )
    return xml_response(body, status=exc.http_status)


def _auth_exempt(request: Request, config: GateConfig) -> bool:
    """Whether the request bypasses SigV4 verification."""
    return not config.auth.enabled or request_path(request) in config.auth.skip_paths


def _register_middleware(app: FastAPI) -> None:
    """Register middleware on the FastAPI app.

    The last registered middleware is the outermost one, so auth is
    registered first and request_id is assigned before auth runs:
    request_id -> auth -> handler.
    """

    @app.middleware("http")
    async def auth_middleware(request: Request, call_next) -> Response:
        """SigV4 authentication middleware.

        Skips configured paths and passes everything through when auth is
        disabled. Errors are rendered here because FastAPI exception handlers
        do not catch exceptions raised from middleware.
        """
        if _auth_exempt(request, app.state.config):
            return await call_next(request)

        verifier: SigV4Verifier = app.state.verifier
        try:
            credential = verifier.verify(request)
        except SigV4Error as exc:
            metrics.record_verification(exc.code)
            path = request_path(request)
            logger.info(
                "Rejected %s %s: %s",
                request.method,
                path,
                exc.detail,
                extra={
                    "method": request.method,
                    "path": path,
                    "status": exc.http_status,
                    "error_code": exc.code,
                    "request_id": getattr(request.state, "request_id", ""),
                },
            )
            return _error_response(request, exc)

        metrics.record_verification("accepted")
        request.state.credential = credential
        return await call_next(request)

    @app.middleware("http")
    async def request_id_middleware(request: Request, call_next) -> Response:
        """Assign an x-amz-request-id and log one line per request."""
        request_id = secrets.token_hex(8).upper()
        request.state.request_id = request_id
        start = time.monotonic()

        response = await call_next(request)

        duration_ms = round((time.monotonic() - start) * 1000, 2)
        response.headers["x-amz-request-id"] = request_id

        path = request_path(request)
        if path not in _QUIET_PATHS:
            credential = getattr(request.state, "credential", None)
            logger.info(
                "%s %s %d %.2fms",
                request.method,
                path,
                response.status_code,
                duration_ms,
                extra={
                    "method": request.method,
                    "path": path,
                    "status": response.status_code,
                    "duration_ms": duration_ms,
                    "request_id": request_id,
                    "access_key": credential.access_key_id if credential else None,
                },
            )

        return response


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


def _setup_routes(app: FastAPI) -> None:
    """Register the health probe and the catch-all identity route.

    The catch-all route must come after the fixed routes.
    """

    @app.get("/health")
    async def health_check() -> Response:
        """Return liveness status."""
        return JSONResponse({"status": "ok"})

    @app.api_route(
        "/{path:path}",
        methods=["GET", "HEAD", "PUT", "POST", "DELETE", "PATCH", "OPTIONS"],
    )
    async def authenticated(path: str, request: Request) -> Response:
        """Answer a verified request with the identity it was signed by.

        Exempt requests get an unauthenticated answer; any other request
        without a verified credential is denied.
        """
        credential = getattr(request.state, "credential", None)
        if credential is None and not _auth_exempt(request, app.state.config):
            return _error_response(request, NotAuthenticatedError())
        if request.method == "HEAD":
            return Response(status_code=200)
        if credential is None:
            return JSONResponse({"authenticated": False})
        return JSONResponse(
            {
                "authenticated": True,
                "access_key_id": credential.access_key_id,
                "region": credential.region,
                "service": credential.service,
            }
        )
