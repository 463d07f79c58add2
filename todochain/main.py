from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from todochain import __version__
from todochain.api.v1.middleware.error_handler import ErrorHandlerMiddleware
from todochain.api.v1.middleware.logging_middleware import LoggingMiddleware
from todochain.api.v1.router import v1_router
from todochain.config import settings
from todochain.dependencies import build_agent_service, build_executor, build_plan_store
from todochain.engine.runs import RunRegistry
from todochain.utils.logging import get_logger, setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(debug=settings.debug)
    logger = get_logger("startup")
    logger.info("Starting todo chain engine", version=__version__)

    store = build_plan_store()
    service = build_agent_service()
    app.state.plan_store = store
    app.state.executor = build_executor(service, store)
    app.state.run_registry = RunRegistry()
    logger.info(
        "Services initialized",
        plan_store=settings.plan_store_backend,
        agent_service_url=settings.agent_service_url,
        ordering=settings.ordering_strategy,
    )

    yield

    logger.info("Shutting down")
    await app.state.run_registry.shutdown()
    await app.state.executor.aclose()
    await service.aclose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Todo Chain Engine",
        description="Dependency-ordered execution of agent task chains",
        version=__version__,
        lifespan=lifespan,
    )

    # Middleware is applied in reverse order -- outermost first.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router, prefix="/api/v1")

    return app


app = create_app()
