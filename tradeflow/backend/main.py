from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from tradeflow.backend.api.routes.trading import router as trading_router
from tradeflow.backend.core.config import get_settings
from tradeflow.backend.core.errors import ConfigurationError, StepTimeoutError, TradeFlowError
from tradeflow.backend.core.log_config import configure_logging
from tradeflow.backend.core.system import TradingSystem

settings = get_settings()

ERROR_STATUS = {
    ConfigurationError: 500,
    StepTimeoutError: 504,
}


def create_app(system: TradingSystem | None = None, warm_cache: bool = True) -> FastAPI:
    """
    Builds the API app. A pre-built `system` (with stub collaborators) can be
    injected; otherwise one is created from settings at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(settings.LOG_LEVEL)
        app.state.system = system or TradingSystem(settings)
        await app.state.system.start(warm_cache=warm_cache)
        yield
        await app.state.system.stop()

    app = FastAPI(
        title=settings.APP_NAME,
        description="Tiered natural-language trade intent resolution and execution",
        lifespan=lifespan,
    )

    # Enable CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(TradeFlowError)
    async def tradeflow_error_handler(request: Request, exc: TradeFlowError):
        status = ERROR_STATUS.get(type(exc), 422)
        logger.warning(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=status, content={"error": exc.code, "detail": str(exc)})

    app.include_router(trading_router, prefix=settings.API_V1_STR, tags=["trading"])

    @app.get("/health")
    async def health_check(request: Request):
        report = await request.app.state.system.orchestrator.health_check()
        return JSONResponse(status_code=200 if report["healthy"] else 503, content=report)

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("tradeflow.backend.main:app", host="0.0.0.0", port=8000, reload=True)
