from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from workbench import __version__
from workbench.agent.errors import DispatchError
from workbench.logging import configure_logging, get_logger
from workbench.server.routers.agent import router as agent_router
from workbench.server.routers.data import router as data_router
from workbench.server.routers.tooling import router as tooling_router
from workbench.server.runtime import get_runtime, get_runtime_async, reset_runtime

_logger = get_logger(__name__)

OPEN_PATHS = frozenset({"/health"})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    runtime = await get_runtime_async()
    configure_logging(runtime.config.log_level, runtime.config.log_format)
    yield
    await reset_runtime()


app = FastAPI(
    title="workbench",
    description="Approval-gated planning agent for todos, projects, events and personal tasks",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def require_api_key(request: Request, call_next):
    api_key = get_runtime().config.api_key
    if api_key and request.url.path not in OPEN_PATHS and request.method != "OPTIONS":
        if request.headers.get("authorization") != f"Bearer {api_key}":
            return JSONResponse(status_code=401, content={"detail": "Invalid or missing API key"})
    return await call_next(request)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(_request: Request, exc: DispatchError):
    return JSONResponse(
        status_code=502,
        content={"detail": str(exc), "retryable": exc.retryable},
    )


app.include_router(agent_router)
app.include_router(tooling_router)
app.include_router(data_router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": __version__}
