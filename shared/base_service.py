"""
Base service class for membership POS backend services.
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from typing import Any, Awaitable, Callable, Dict, List, Optional
import time
import os

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger, set_operator, set_request_id, request_id_var
from shared.metrics import get_metrics_collector
from shared.errors import ErrorResponse, ServiceException

ShutdownHook = Callable[[], Awaitable[Any]]


class BaseService:
    """FastAPI service shell: config, logging, metrics, health and error bodies.

    Subclasses add their routes after calling ``super().__init__`` and
    register cleanup with ``add_shutdown_hook``.
    """

    def __init__(self, service_name: str, port: int, config: Optional[ServiceConfig] = None):
        self.service_name = service_name
        self.port = port
        self.config = config or get_config(service_name, port)
        self.logger = get_logger(service_name)
        self.metrics = get_metrics_collector(service_name)
        self._start_time = time.time()
        self._shutdown_hooks: List[ShutdownHook] = []

        configure_logging(service_name, self.config.log_level)

        self.app = self._create_app()
        self._setup_middleware()
        self._setup_routes()
        self._setup_exception_handlers()

    def add_shutdown_hook(self, hook: ShutdownHook) -> None:
        """Run ``hook`` when the application shuts down, in registration order."""
        self._shutdown_hooks.append(hook)

    def _create_app(self) -> FastAPI:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            self.logger.info("Service starting", port=self.config.port, env=self.config.env)
            yield
            for hook in self._shutdown_hooks:
                try:
                    await hook()
                except Exception as e:
                    self.logger.error("Shutdown hook failed", hook=getattr(hook, "__qualname__", repr(hook)), error=str(e))
            self.logger.info("Service stopped")

        return FastAPI(
            title=f"{self.service_name.title()} Service",
            description=f"Retail POS backend - {self.service_name.title()} Service",
            version="1.0.0",
            docs_url="/docs" if self.config.env == "local" else None,
            redoc_url="/redoc" if self.config.env == "local" else None,
            lifespan=lifespan,
        )

    def _setup_middleware(self):
        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=self.config.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @self.app.middleware("http")
        async def request_context(request: Request, call_next):
            """Tag the request with an id and operator, then time and log it."""
            request_id = set_request_id(request.headers.get("X-Request-ID"))
            set_operator(request.headers.get("X-Operator"))
            started = time.perf_counter()

            response = await call_next(request)

            duration = time.perf_counter() - started
            # Label by route template so record ids do not explode metric cardinality.
            route = request.scope.get("route")
            endpoint = getattr(route, "path", request.url.path)
            self.metrics.record_http_request(
                method=request.method,
                endpoint=endpoint,
                status_code=response.status_code,
                duration=duration,
            )

            log = self.logger.warning if response.status_code >= 500 else self.logger.info
            log(
                "HTTP request",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )

            response.headers["X-Request-ID"] = request_id
            return response

    def _setup_routes(self):
        @self.app.get("/health")
        async def health_check():
            try:
                dependencies = await self._check_dependencies()
            except Exception as e:
                self.logger.error("Health check failed", error=str(e))
                self.metrics.record_health_check("error")
                return JSONResponse(
                    status_code=503,
                    content={"service": self.service_name, "status": "error", "error": str(e)},
                )

            self.metrics.record_health_check("ok")
            return {
                "service": self.service_name,
                "status": "ok",
                "env": self.config.env,
                "uptime_seconds": round(time.time() - self._start_time, 3),
                "dependencies": dependencies,
                "version": "1.0.0",
                "commit": os.getenv("GIT_COMMIT", "unknown"),
            }

        @self.app.get("/metrics")
        async def metrics_endpoint():
            return Response(content=generate_latest(self.metrics.registry), media_type=CONTENT_TYPE_LATEST)

    def _setup_exception_handlers(self):
        """Render every error path as an envelope-shaped ``ErrorResponse``."""

        @self.app.exception_handler(ServiceException)
        async def service_exception_handler(request: Request, exc: ServiceException):
            self.logger.error("Service error", code=exc.code, message=exc.message, details=exc.details)
            self.metrics.record_error(exc.code)
            return self._error_response(exc.status_code, exc.to_response(request_id_var.get()))

        @self.app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            errors = jsonable_encoder(exc.errors())
            first = errors[0] if errors else {}
            location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
            message = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
            self.logger.info("Rejected malformed request", path=request.url.path, reason=message)
            self.metrics.record_error("VALIDATION_ERROR")
            return self._error_response(400, ErrorResponse(
                message=message,
                error_code="validation",
                request_id=request_id_var.get(),
                details={"errors": errors},
            ))

        @self.app.exception_handler(Exception)
        async def general_exception_handler(request: Request, exc: Exception):
            self.logger.error("Unhandled exception", error=str(exc), exc_info=True)
            self.metrics.record_error("INTERNAL_ERROR")
            return self._error_response(500, ErrorResponse(
                message="Internal server error",
                error_code="unknown",
                request_id=request_id_var.get(),
            ))

    @staticmethod
    def _error_response(status_code: int, body: ErrorResponse) -> JSONResponse:
        return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Check service dependencies. Override in subclasses."""
        return {}

    def run(self):
        """Run the service."""
        import uvicorn
        uvicorn.run(
            self.app,
            host=self.config.host,
            port=self.config.port,
            log_level=self.config.log_level.lower()
        )
