# main.py
"""
VaxTrack vaccination registration API.

Register vaccinations, look up certificates by ID, and serve the dashboard
aggregates (totals, dose and vaccine breakdowns, state/district heat maps).
"""

import io
import os
import secrets
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict
from uuid import uuid4

import pandas as pd
from dotenv import load_dotenv
from fastapi import Body, Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.exceptions import HTTPException as StarletteHTTPException

from database import get_store, test_connection
from errors import VaxTrackError, ValidationError
from logging_config import bind_request_context, configure_logging, get_logger
from models import VaccinationPayload, VaccinationRecord
from notifications import NotificationQueue, ResendEmailSender
from records import RecordService
from vaccine_data import DOSE_BUCKETS, GENDERS, VACCINE_INFO

# Load environment variables
load_dotenv()

configure_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = get_store()
    if store.name == "mongo":
        await test_connection()

    sender = ResendEmailSender.from_env()
    notifier = NotificationQueue(sender)
    notifier.start()

    app.state.store = store
    app.state.notifier = notifier
    app.state.records = RecordService(store, notifier)

    logger.info(
        "VaxTrack server started",
        store=store.name,
        email="configured" if sender.configured else "not configured",
    )

    yield

    await notifier.stop()
    await sender.aclose()
    logger.info("VaxTrack server stopped")


# Create FastAPI app
app = FastAPI(title="Vaccination Tracking System", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = str(uuid4())
    start_time = time.perf_counter()
    bind_request_context(request_id=request_id, method=request.method, path=request.url.path)

    response = await call_next(request)

    duration_ms = int((time.perf_counter() - start_time) * 1000)
    response.headers["X-Request-ID"] = request_id
    logger.info("Request completed", status_code=response.status_code, duration_ms=duration_ms)
    return response


# --- Error responses: always {"error": ..., "details"?: ...} ---

@app.exception_handler(VaxTrackError)
async def vaxtrack_error_handler(request: Request, exc: VaxTrackError):
    if exc.status_code >= 500:
        logger.error("Request failed", error=exc.message, details=exc.details, error_type=type(exc).__name__)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}" for err in exc.errors()
    )
    return JSONResponse(status_code=400, content={"error": "Invalid request body", "details": details})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error", error_type=type(exc).__name__)
    return JSONResponse(status_code=500, content={"error": "Internal server error", "details": str(exc)})


# --- Dependencies ---

bearer = HTTPBearer(auto_error=False)


def require_token(credentials: HTTPAuthorizationCredentials = Depends(bearer)) -> None:
    api_token = os.getenv("API_TOKEN")

    if not api_token:
        raise HTTPException(status_code=500, detail="API token not configured on server")

    if credentials is None or not secrets.compare_digest(credentials.credentials, api_token):
        raise HTTPException(
            status_code=401,
            detail="Unauthorized: Invalid bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_records(request: Request) -> RecordService:
    return request.app.state.records


# --- Health ---

@app.get("/health")
async def health(request: Request):
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "server": "vaccination-tracking-system",
        "store": request.app.state.store.name,
    }


# --- Vaccination records ---

@app.post("/vaccinations", status_code=201, dependencies=[Depends(require_token)])
async def register_vaccination(payload: VaccinationPayload, records: RecordService = Depends(get_records)):
    record = await records.register(payload)
    return {"success": True, "certId": record.cert_id, "record": record.to_wire()}


@app.get("/vaccinations", dependencies=[Depends(require_token)])
async def list_vaccinations(records: RecordService = Depends(get_records)):
    return {"success": True, "records": [r.to_wire() for r in await records.list_records()]}


# Export records to CSV
@app.get("/vaccinations/export", dependencies=[Depends(require_token)])
async def export_vaccinations(records: RecordService = Depends(get_records)):
    rows = [r.to_wire() for r in await records.list_records()]
    if not rows:
        raise HTTPException(status_code=404, detail="No records found")

    df = pd.DataFrame(rows, columns=list(rows[0].keys()))
    stream = io.StringIO()
    df.to_csv(stream, index=False)
    stream.seek(0)
    return StreamingResponse(stream, media_type="text/csv", headers={
        "Content-Disposition": "attachment; filename=vaccination_records.csv"
    })


@app.post("/vaccinations/bulk", dependencies=[Depends(require_token)])
async def bulk_insert_vaccinations(
    body: Dict[str, Any] = Body(...),
    records: RecordService = Depends(get_records),
):
    items = body.get("records")
    if not isinstance(items, list):
        raise ValidationError("Records must be an array")

    result = await records.bulk_import(items)
    return {"success": True, "message": result.message, "inserted": result.inserted, "errors": result.errors}


@app.get("/vaccinations/{cert_id}", dependencies=[Depends(require_token)])
async def get_vaccination(cert_id: str, records: RecordService = Depends(get_records)):
    record: VaccinationRecord = await records.get(cert_id)
    return {"success": True, "record": record.to_wire()}


@app.delete("/vaccinations/{cert_id}", dependencies=[Depends(require_token)])
async def delete_vaccination(cert_id: str, records: RecordService = Depends(get_records)):
    await records.delete(cert_id)
    return {"success": True, "message": "Record deleted successfully"}


# --- Dashboard ---

@app.get("/dashboard", dependencies=[Depends(require_token)])
async def dashboard(records: RecordService = Depends(get_records)):
    stats = await records.dashboard()
    return {"success": True, "stats": stats.to_wire()}


# Vaccine catalogue for the registration form
@app.get("/vaccines", dependencies=[Depends(require_token)])
def vaccine_catalogue():
    return {"vaccines": VACCINE_INFO, "doses": DOSE_BUCKETS, "genders": GENDERS}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
