from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from prometheus_fastapi_instrumentator import Instrumentator

import contentops.models  # ensure models load for Alembic
from contentops.api.routes.billing import router as billing_router
from contentops.api.routes.campaigns import router as campaigns_router
from contentops.api.routes.jobs import router as jobs_router
from contentops.api.routes.publish import router as publish_router
from contentops.logging_config import configure_logging
from contentops.tracing import configure_tracing

# ------------------------------------------------------------------
# Configure Observability
# ------------------------------------------------------------------
configure_logging()
configure_tracing()

app = FastAPI(title="contentops")

app.include_router(jobs_router)
app.include_router(publish_router)
app.include_router(billing_router)
app.include_router(campaigns_router)

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
