import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from analysis_engine import __version__
from analysis_engine.api.routes import router
from analysis_engine.cache.redis_client import RedisBackend
from analysis_engine.config import Settings
from analysis_engine.services import Services

settings = Settings.from_env()

logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s %(message)s")
log = logging.getLogger("ae.app")


@asynccontextmanager
async def lifespan(app: FastAPI):
    services = await Services.create(settings)
    app.state.services = services
    services.start()
    log.info(f"Stock Intel {__version__} up — store={type(services.backend).__name__}")
    yield
    await services.close()


app = FastAPI(
    title="Stock Intel API",
    description="Per-stock research aggregation and scored verdicts.",
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

app.include_router(router)


@app.get("/health", tags=["System"])
async def health(request: Request):
    services = request.app.state.services
    return {
        "status": "ok",
        "store": "redis" if isinstance(services.backend, RedisBackend) else "memory",
        "backend_ok": await services.backend.ping(),
        "scheduler": services.scheduler.running,
        "timestamp": int(time.time()),
    }


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("app:app", host="0.0.0.0", port=port, reload=False, log_level="info")
