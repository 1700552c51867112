from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.v1.router import router as v1_router
from app.core.config import settings
from app.core.telemetry import setup_logging, setup_telemetry
from app.services.runtime import build_runtime


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = build_runtime(settings)
    app.state.runtime = runtime
    await runtime.reconciler.resume()
    try:
        yield
    finally:
        await runtime.aclose()


setup_logging()

app = FastAPI(title="Proof of Delivery API", version="0.1.0", lifespan=lifespan)

setup_telemetry(app)
app.include_router(v1_router)
