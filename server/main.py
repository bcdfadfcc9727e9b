import logging
from typing import List
from fastapi import FastAPI, Depends, BackgroundTasks, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from safewatch.core.errors import (
    ContactValidationError,
    EmergencyAccessError,
    EmergencyNotFoundError,
    InvalidTransitionError,
    LocationSessionClosedError,
    StoreError,
    ThresholdUpdateError,
)
from safewatch.core.records import (
    AdaptiveThresholds,
    EmergencyContact,
    EmergencyRecord,
    EmergencyStats,
    LocationSample,
)
from . import schemas
from .dependencies import Services, get_services, get_user_id


# Setup Logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("SafeWatchServer")

app = FastAPI(title="SafeWatch Backend", version="1.0.0")

_STORE_STATUS = {"transient": 503, "structural": 500, "conflict": 409, "not_found": 404}


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation Error: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()},
    )


@app.exception_handler(StoreError)
async def store_exception_handler(request: Request, exc: StoreError):
    logger.error(f"Store error ({exc.kind}) on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=_STORE_STATUS.get(exc.kind, 500),
        content={"success": False, "error": str(exc), "kind": exc.kind, "collection": exc.collection},
    )


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        return JSONResponse(status_code=status_code, content={"success": False, "error": str(exc)})
    return handler


app.add_exception_handler(EmergencyNotFoundError, _error_handler(404))
app.add_exception_handler(EmergencyAccessError, _error_handler(403))
app.add_exception_handler(InvalidTransitionError, _error_handler(409))
app.add_exception_handler(LocationSessionClosedError, _error_handler(409))
app.add_exception_handler(ContactValidationError, _error_handler(400))
app.add_exception_handler(ThresholdUpdateError, _error_handler(503))


# ---------------------------------------------------------------------
# EMERGENCIES
# ---------------------------------------------------------------------
@app.post("/api/v1/emergencies/report", response_model=schemas.ReportResponse)
def report_emergency(
    request: schemas.ReportRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    logger.info(f"Received emergency report from user {user_id} (manual={request.manual})")
    # notification runs after the response; the record already exists by then
    result = services.controller.report_emergency(
        user_id,
        request.sensor_data,
        request.context_data,
        request.location,
        manual=request.manual,
        schedule=background_tasks.add_task,
    )
    return schemas.ReportResponse(
        emergency_id=result.emergency_id,
        score=result.score,
        breakdown=result.breakdown,
        classification=result.classification,
        manual=result.manual,
        explanation=result.explanation,
    )


@app.post("/api/v1/emergencies/{emergency_id}/cancel", response_model=schemas.StatusResponse)
def cancel_emergency(
    emergency_id: str,
    request: schemas.CancelRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    services.controller.cancel_emergency(emergency_id, request.reason, request.sensor_snapshot, user_id=user_id)
    return schemas.StatusResponse()


@app.post("/api/v1/emergencies/{emergency_id}/resolve", response_model=schemas.StatusResponse)
def resolve_emergency(
    emergency_id: str,
    request: schemas.ResolveRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    services.controller.resolve_emergency(emergency_id, request.notes, resolved_by=user_id)
    return schemas.StatusResponse()


@app.get("/api/v1/emergencies/active", response_model=List[EmergencyRecord])
def get_active_emergencies(limit: int = 50, services: Services = Depends(get_services)):
    return services.controller.service.list_active(limit=limit)


@app.get("/api/v1/emergencies/history", response_model=List[EmergencyRecord])
def get_emergency_history(
    limit: int = 20,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    return services.controller.service.history(user_id, limit=limit)


@app.get("/api/v1/emergencies/stats", response_model=EmergencyStats)
def get_emergency_stats(user_id: str = Depends(get_user_id), services: Services = Depends(get_services)):
    return services.controller.service.stats(user_id)


@app.get("/api/v1/emergencies/{emergency_id}", response_model=EmergencyRecord)
def get_emergency(emergency_id: str, services: Services = Depends(get_services)):
    return services.controller.service.get(emergency_id)


# ---------------------------------------------------------------------
# CONTACTS
# ---------------------------------------------------------------------
@app.post("/api/v1/contacts", response_model=EmergencyContact)
def add_contact(
    contact: schemas.ContactCreate,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    created = services.contacts.add_contact(
        user_id, contact.name, str(contact.email), contact.phone, contact.relationship
    )
    # the contact is saved either way; the notice goes out after the response
    background_tasks.add_task(services.notifier.notify_contact_added, created)
    return created


@app.get("/api/v1/contacts", response_model=List[EmergencyContact])
def list_contacts(user_id: str = Depends(get_user_id), services: Services = Depends(get_services)):
    return services.contacts.list_contacts(user_id)


# ---------------------------------------------------------------------
# LOCATION TRACKING
# ---------------------------------------------------------------------
@app.put("/api/v1/locations/{session_id}", response_model=LocationSample)
def update_location(
    session_id: str,
    update: schemas.LocationUpdate,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    return services.tracker.update_sample(
        session_id, user_id, update.latitude, update.longitude, update.accuracy, update.severity
    )


@app.post("/api/v1/locations/{session_id}/resolve", response_model=LocationSample)
def resolve_location(session_id: str, services: Services = Depends(get_services)):
    return services.tracker.resolve_session(session_id)


# ---------------------------------------------------------------------
# ADAPTIVE LEARNING
# ---------------------------------------------------------------------
@app.get("/api/v1/thresholds", response_model=AdaptiveThresholds)
def get_thresholds(user_id: str = Depends(get_user_id), services: Services = Depends(get_services)):
    return services.thresholds.get(user_id)


@app.post("/api/v1/learning/feedback", response_model=AdaptiveThresholds)
def submit_feedback(
    feedback: schemas.FeedbackRequest,
    user_id: str = Depends(get_user_id),
    services: Services = Depends(get_services),
):
    _, thresholds = services.recorder.record(
        user_id, feedback.outcome, feedback.sensor_snapshot, emergency_id=feedback.emergency_id
    )
    return thresholds


@app.get("/")
def health_check():
    return {"status": "running"}
