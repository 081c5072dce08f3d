from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from callaudit.config import settings
from callaudit.database import SCHEMA_VERSION, SessionLocal, init_db
from callaudit.errors import (
    CallAuditError,
    DuplicateAudio,
    InvalidArgument,
    RecordNotFound,
    StorageUnavailable,
)
from callaudit.pipelines.audit_pipeline import CallSubmission, nominate, submit_call
from callaudit.schemas.audit_schemas import (
    AuditEntry,
    DismissRequest,
    EmailRequest,
    ImportResponse,
    RebuttalRequest,
    RootCauseRequest,
    SummaryResponse,
)
from callaudit.services import aggregation_service as aggregation
from callaudit.services import list_service, session_service
from callaudit.services.import_service import ImportFile, export_entries, export_filename, import_files
from callaudit.services.leaderboard_service import leaderboard
from callaudit.services.llm_client import AnalysisService, LLMClient
from callaudit.services.record_store import RecordStore
from callaudit.services.session_service import SessionSlot
from callaudit.utils.logging_config import StructuredLogger, auditor_var, init_logging, metrics

# Initialize structured logging
init_logging()

logger = StructuredLogger(__name__)

# The API stays up without storage so /status can report the problem
try:
    schema_version: Optional[int] = init_db()
    storage_error: Optional[str] = None
except StorageUnavailable as e:
    schema_version = None
    storage_error = e.message
    logger.error("Starting in degraded mode", error=e.message)

app = FastAPI(
    title="CallAudit API",
    version="0.1.0",
    description="Call quality auditing store and aggregation engine",
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    if settings.is_production:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


@app.exception_handler(CallAuditError)
async def call_audit_error_handler(request: Request, exc: CallAuditError):
    body = {"detail": exc.message, "error": type(exc).__name__}
    if isinstance(exc, DuplicateAudio):
        body["existing"] = _entry_json(exc.existing)
    if isinstance(exc, InvalidArgument) and exc.fields:
        body["fields"] = exc.fields
    metrics.increment(f"errors.{type(exc).__name__}")
    logger.warning("Request failed", path=request.url.path, error=type(exc).__name__, detail=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


# ============== DEPENDENCIES ==============


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_store(db: Session = Depends(get_db)) -> RecordStore:
    return RecordStore(db)


def get_session_slot() -> SessionSlot:
    return SessionSlot()


@lru_cache
def get_analysis_service() -> AnalysisService:
    return LLMClient()


def _entry_json(entry: AuditEntry, include_audio: bool = False) -> dict:
    data = entry.to_json_dict()
    if not include_audio:
        data.pop("audioData", None)
    return data


def _report_degraded(response: Response, lists: list_service.LoadedLists) -> None:
    if lists.degraded:
        response.headers["X-Storage-Degraded"] = "true"
        response.headers["X-Storage-Error"] = lists.error


def _current_user(slot: SessionSlot) -> str:
    user = slot.current_user
    if not user:
        raise InvalidArgument("Please log in as an auditor first.", fields=["currentUser"])
    auditor_var.set(user)
    return user


def _history(
    store: RecordStore,
    slot: SessionSlot,
    period: aggregation.TimePeriod,
    view: str,
) -> List[AuditEntry]:
    """Stored entries narrowed to the requested window and data view."""
    if view not in ("all", "mine"):
        raise InvalidArgument("view must be 'all' or 'mine'.", fields=["view"])
    entries = aggregation.filter_by_period(store.get_all(), period)
    if view == "mine":
        entries = aggregation.filter_by_auditor(entries, _current_user(slot))
    return aggregation.sort_by_timestamp_desc(entries)


# ============== STATUS ==============


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/status")
def status_info():
    """API status, storage state and in-process metrics."""
    return {
        "status": "degraded" if storage_error else "ok",
        "version": "0.1.0",
        "environment": settings.environment,
        "schema_version": schema_version,
        "expected_schema_version": SCHEMA_VERSION,
        "storage_error": storage_error,
        "metrics": metrics.get_stats(),
    }


# ============== AUDITS ==============


@app.post("/audits", status_code=201)
async def create_audit(
    file: UploadFile = File(...),
    agent_email: str = Form(...),
    buyer_user_id: str = Form(...),
    call_stamp: str = Form(...),
    store: RecordStore = Depends(get_store),
    slot: SessionSlot = Depends(get_session_slot),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    """Analyze an uploaded call recording and store the audit."""
    submission = CallSubmission(
        audio=await file.read(),
        file_name=file.filename or "audio",
        mime_type=file.content_type or "application/octet-stream",
        auditor_name=_current_user(slot),
        agent_email=list_service.normalize_email(agent_email),
        buyer_user_id=buyer_user_id,
        call_stamp=call_stamp,
    )
    entry = submit_call(store, analysis_service, submission)
    return _entry_json(entry)


@app.get("/audits")
def list_audits(
    period: aggregation.TimePeriod = aggregation.TimePeriod.ALL,
    view: str = "all",
    store: RecordStore = Depends(get_store),
    slot: SessionSlot = Depends(get_session_slot),
):
    return [_entry_json(e) for e in _history(store, slot, period, view)]


@app.delete("/audits")
def clear_audits(store: RecordStore = Depends(get_store)):
    """Delete every audit entry. Agent and auditor lists are kept."""
    return {"deleted": store.clear_all()}


@app.get("/audits/export")
def export_audits(store: RecordStore = Depends(get_store)):
    entries = aggregation.sort_by_timestamp_desc(store.get_all())
    if not entries:
        raise InvalidArgument("No history to export.")
    return Response(
        content=export_entries(entries),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@app.post("/audits/import", response_model=ImportResponse)
async def import_audits(
    files: List[UploadFile] = File([]),
    store: RecordStore = Depends(get_store),
):
    """Merge one or more exported JSON files into the store."""
    uploads = [ImportFile(name=f.filename or "upload.json", content=await f.read()) for f in files]
    result = import_files(store, uploads)
    return ImportResponse(
        summary=result.summary,
        message=result.summary.message,
        total_records=len(result.entries),
    )


@app.get("/audits/{entry_id}")
def get_audit(entry_id: int, store: RecordStore = Depends(get_store)):
    entry = store.get(entry_id)
    if entry is None:
        raise RecordNotFound(entry_id)
    return _entry_json(entry, include_audio=True)


@app.post("/audits/{entry_id}/nominate")
def nominate_audit(entry_id: int, store: RecordStore = Depends(get_store)):
    return _entry_json(nominate(store, entry_id))


# ============== AGENTS & AUDITORS ==============


@app.get("/agents")
def list_agents(response: Response, store: RecordStore = Depends(get_store)):
    lists = list_service.load_lists(store)
    _report_degraded(response, lists)
    return lists.agents


@app.post("/agents")
def add_agent(request: EmailRequest, store: RecordStore = Depends(get_store)):
    return list_service.add_agent(store, request.email)


@app.delete("/agents/{email}")
def delete_agent(email: str, store: RecordStore = Depends(get_store)):
    return list_service.delete_agent(store, email)


@app.get("/auditors")
def list_auditors(response: Response, store: RecordStore = Depends(get_store)):
    lists = list_service.load_lists(store)
    _report_degraded(response, lists)
    return lists.auditors


@app.post("/auditors")
def add_auditor(request: EmailRequest, store: RecordStore = Depends(get_store)):
    return list_service.add_auditor(store, request.email)


@app.delete("/auditors/{email}")
def delete_auditor(email: str, store: RecordStore = Depends(get_store)):
    return list_service.delete_auditor(store, email)


# ============== SESSION ==============


@app.get("/session")
def get_session(slot: SessionSlot = Depends(get_session_slot)):
    return {"current_user": slot.current_user, "dismissed_alerts": slot.dismissed_alerts}


@app.post("/session/login")
def login(
    request: EmailRequest,
    store: RecordStore = Depends(get_store),
    slot: SessionSlot = Depends(get_session_slot),
):
    return {"current_user": session_service.login(slot, store, request.email)}


@app.post("/session/logout")
def logout(slot: SessionSlot = Depends(get_session_slot)):
    session_service.logout(slot)
    return {"current_user": None}


# ============== DASHBOARD & ALERTS ==============


@app.get("/dashboard")
def dashboard(
    response: Response,
    period: aggregation.TimePeriod = aggregation.TimePeriod.ALL,
    store: RecordStore = Depends(get_store),
    slot: SessionSlot = Depends(get_session_slot),
):
    """Team statistics for the period, with dismissed alerts hidden."""
    lists = list_service.load_lists(store)
    _report_degraded(response, lists)
    stats = aggregation.dashboard_stats(store.get_all(), lists.agents or None, lists.auditors or None, period)
    dismissed = slot.dismissed_alerts
    stats.coaching_alerts = aggregation.visible_alerts(stats.coaching_alerts, dismissed)
    stats.compliance_alerts = aggregation.visible_alerts(stats.compliance_alerts, dismissed)
    return stats


@app.post("/alerts/dismiss")
def dismiss_alerts(request: DismissRequest, slot: SessionSlot = Depends(get_session_slot)):
    return {"dismissed_alerts": slot.dismiss(request.ids)}


@app.post("/alerts/dismiss-all")
def dismiss_all_alerts(
    response: Response,
    period: aggregation.TimePeriod = aggregation.TimePeriod.ALL,
    store: RecordStore = Depends(get_store),
    slot: SessionSlot = Depends(get_session_slot),
):
    """Dismiss every coaching and compliance alert currently shown."""
    lists = list_service.load_lists(store)
    _report_degraded(response, lists)
    stats = aggregation.dashboard_stats(store.get_all(), lists.agents or None, lists.auditors or None, period)
    shown = [*stats.coaching_alerts, *stats.compliance_alerts]
    dismissed = aggregation.dismiss_all(shown, slot.dismissed_alerts)
    return {"dismissed_alerts": slot.dismiss(sorted(dismissed))}


# ============== LEADERBOARD & REPORTS ==============


@app.get("/leaderboard")
def get_leaderboard(
    period: aggregation.TimePeriod = aggregation.TimePeriod.ALL,
    store: RecordStore = Depends(get_store),
):
    return leaderboard(aggregation.filter_by_period(store.get_all(), period))


@app.get("/agents/{email}/trend")
def agent_trend(
    email: str,
    parameter: str = aggregation.OVERALL_SCORE,
    store: RecordStore = Depends(get_store),
):
    return aggregation.agent_trend(store.get_all(), list_service.normalize_email(email), parameter)


@app.get("/best-practices")
def best_practices(
    agent: Optional[str] = None,
    keyword: str = "",
    store: RecordStore = Depends(get_store),
):
    entries = aggregation.best_practices(store.get_all(), agent, keyword)
    return [_entry_json(e) for e in aggregation.sort_by_timestamp_desc(entries)]


# ============== AI SUMMARIES ==============


@app.post("/summaries/performance", response_model=SummaryResponse)
def performance_summary(
    period: aggregation.TimePeriod = aggregation.TimePeriod.ALL,
    view: str = "all",
    store: RecordStore = Depends(get_store),
    slot: SessionSlot = Depends(get_session_slot),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    entries = _history(store, slot, period, view)
    if not entries:
        raise InvalidArgument("No audits in this view to summarize.")
    content = analysis_service.summarize([e.analysis for e in entries])
    return SummaryResponse(title="Performance Summary", content=content, audit_count=len(entries))


@app.post("/summaries/coaching/{email}", response_model=SummaryResponse)
def coaching_plan(
    email: str,
    store: RecordStore = Depends(get_store),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    agent = list_service.normalize_email(email)
    history = aggregation.sort_by_timestamp_desc(aggregation.filter_by_agent(store.get_all(), agent))
    recent = history[: settings.coaching_plan_max_audits]
    if not recent:
        raise InvalidArgument(f"No audits found for {agent}.")
    content = analysis_service.coaching_plan(agent, [e.analysis for e in recent])
    return SummaryResponse(title=f"Weekly Coaching Plan for {agent}", content=content, audit_count=len(recent))


@app.post("/summaries/root-cause", response_model=SummaryResponse)
def root_cause(
    request: RootCauseRequest,
    store: RecordStore = Depends(get_store),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    low = aggregation.low_scoring_audits(store.get_all(), request.parameter)
    if len(low) < settings.root_cause_min_audits:
        raise InvalidArgument(
            f"Not enough low-scoring calls for '{request.parameter}' to perform a meaningful "
            f"analysis (need at least {settings.root_cause_min_audits}).",
            fields=["parameter"],
        )
    content = analysis_service.root_cause_analysis(request.parameter, [e.analysis for e in low])
    return SummaryResponse(title=f"Root Cause Analysis: {request.parameter}", content=content, audit_count=len(low))


@app.post("/summaries/call-of-the-week", response_model=SummaryResponse)
def call_of_the_week(
    period: aggregation.TimePeriod = aggregation.TimePeriod.ALL,
    store: RecordStore = Depends(get_store),
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    candidates = aggregation.call_of_the_week_candidates(aggregation.filter_by_period(store.get_all(), period))
    if not candidates:
        raise InvalidArgument(
            f"No high-scoring calls (score {settings.call_of_the_week_min_score}+) found "
            "to nominate a 'Call of the Week'."
        )
    content = analysis_service.call_of_the_week(candidates)
    return SummaryResponse(title="Call of the Week", content=content, audit_count=len(candidates))


@app.post("/rebuttals", response_model=SummaryResponse)
def rebuttal(
    request: RebuttalRequest,
    analysis_service: AnalysisService = Depends(get_analysis_service),
):
    if not request.objection.strip():
        raise InvalidArgument("Please enter the buyer's objection.", fields=["objection"])
    content = analysis_service.rebuttal(request.objection.strip())
    return SummaryResponse(title="Rebuttal Strategies", content=content, audit_count=0)
