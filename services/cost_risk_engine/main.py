# services/cost_risk_engine/main.py

from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from .utils.logging import setup_logging
from .database import init_db
from .config import settings
from .routers import risk as risk_router

logger = setup_logging()

app = FastAPI(
    title=settings.SERVICE_NAME,
    version=settings.VERSION,
    description="Contract Cost Risk Engine: наблюдения утилизации потолка, волатильность категорий и прогноз пробоя",
)

Instrumentator().instrument(app).expose(app, include_in_schema=False)


@app.on_event("startup")
def startup_event():
    init_db()
    logger.info("⚙️ cost_risk_engine started and schema ensured.")


@app.get("/health", tags=["system"])
async def health():
    return {"status": "ok", "service": "cost_risk_engine"}


@app.get("/ready", tags=["system"])
async def ready():
    return {"status": "ready"}


@app.get("/", include_in_schema=False)
async def root():
    return {"message": "Contract Cost Risk Engine is operational"}


app.include_router(risk_router.router)
