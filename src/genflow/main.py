from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from genflow.api.routes.batches import router as batches_router
from genflow.api.routes.generations import router as generations_router
from genflow.api.routes.rate_limits import router as rate_limits_router
from genflow.api.routes.user_settings import router as user_settings_router
import genflow.models  # register every table on Base.metadata
from genflow.logging_config import configure_logging
from prometheus_fastapi_instrumentator import Instrumentator
from genflow.tracing import configure_tracing
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor

# ------------------------------------------------------------------
# Configure Observability
# ------------------------------------------------------------------
configure_logging()
configure_tracing()

app = FastAPI(title="genflow")

app.include_router(generations_router)
app.include_router(batches_router)
app.include_router(user_settings_router)
app.include_router(rate_limits_router)

# ------------------------------------------------------------------
# Observability
# ------------------------------------------------------------------
FastAPIInstrumentor.instrument_app(app)
Instrumentator().instrument(app).expose(app)

# ------------------------------------------------------------------
# Health Check
# ------------------------------------------------------------------
@app.get("/health")
def health_check():
    return {"status": "ok"}
