import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=LOG_LEVEL, format="%(levelname)s %(name)s %(message)s")
from fastapi.middleware.cors import CORSMiddleware

from app.database import engine
from app.exceptions import ContractFlowError, ValidationError
from app.models.base import Base
import app.models  # noqa: F401 - register all models for create_all
from app.api.endpoints import audit, contracts, coordinator, providers, public, reviews, users

logger = logging.getLogger(__name__)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",") if o.strip()]


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(title="ContractFlow API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ContractFlowError)
async def contractflow_error_handler(request: Request, exc: ContractFlowError):
    if exc.status_code >= 500:
        logger.error("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc)
    else:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc)
    body = {"detail": str(exc), "code": exc.code}
    if isinstance(exc, ValidationError) and exc.fields:
        body["fields"] = exc.fields
    return JSONResponse(status_code=exc.status_code, content=body)


app.include_router(users.router)
app.include_router(contracts.router)
app.include_router(reviews.router)
app.include_router(coordinator.router)
app.include_router(public.router)
app.include_router(providers.router)
app.include_router(audit.router)


@app.get("/health")
def health():
    """Health check endpoint for load balancers and readiness probes."""
    return {"status": "ok", "service": "contractflow-backend"}
