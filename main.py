# main.py
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import appointments
import auth
import medical_records
from database import engine, get_db, init_db, ping
from errors import register_exception_handlers
from graphql_schema import graphql_app
from logging_middleware import RequestLoggingMiddleware
from utils import ENVIRONMENT, FRONTEND_URL, LOG_LEVEL

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

STARTED_AT = time.monotonic()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    logger.info(f"Clinic API started in {ENVIRONMENT} mode")
    yield
    engine.dispose()
    logger.info("Database connections closed")


app = FastAPI(title="Clinic API", lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=[FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Correlation-ID"],
    max_age=600,
)
app.add_middleware(RequestLoggingMiddleware)

register_exception_handlers(app)

app.include_router(auth.router)
app.include_router(appointments.router)
app.include_router(medical_records.router)
app.include_router(graphql_app, prefix="/graphql")


# === Health check: store connectivity and process uptime ===
@app.get("/api/health")
def health(db: Session = Depends(get_db)):
    database_ok = ping(db)
    return JSONResponse(
        status_code=200 if database_ok else 503,
        content={
            "status": "ok" if database_ok else "degraded",
            "database": "connected" if database_ok else "disconnected",
            "uptime": round(time.monotonic() - STARTED_AT, 3),
            "environment": ENVIRONMENT,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
