from contextlib import asynccontextmanager

from fastapi import FastAPI, APIRouter  # type: ignore[import-not-found]

from .logging_config import setup_logging
from .routers import protocols, submissions


@asynccontextmanager
async def lifespan(_app: FastAPI):
    setup_logging()
    from .services.registry_runtime import get_registry_runtime
    from .services.staging_cleanup_manager import staging_cleanup_manager

    get_registry_runtime()
    staging_cleanup_manager.start()
    try:
        yield
    finally:
        staging_cleanup_manager.stop()

app = FastAPI(
    title="Protocol Registry",
    description="Versioned encoding-protocol registry with staged review and promotion.",
    version="0.1.0",
    lifespan=lifespan
)

v1_router = APIRouter(prefix="/v1")
v1_router.include_router(protocols.router)
v1_router.include_router(submissions.router)
app.include_router(v1_router)

@app.get("/")
async def root():
    return {"message": "Protocol Registry is running"}


if __name__ == "__main__":
    import uvicorn

    from .config import config

    uvicorn.run(
        "protocol_registry.main:app",
        host=config.SERVER.HOST,
        port=int(config.SERVER.PORT),
        reload=False,
    )
