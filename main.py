import os
import time
import json
import re
import secrets
import uuid
import ipaddress
from collections import defaultdict, deque
from typing import Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from cv_parser import JobRequirements
from engine import RecruitmentEngine
from jailbreak_detector import ThreatContext
from logging_config import configure_logging, get_logger
import uvicorn

configure_logging()
logger = get_logger("api")

DISABLE_DOCS = (os.getenv("DISABLE_DOCS", "true").strip().lower() in {"1", "true", "yes"})
app = FastAPI(
    title="Recruitment Screening Agent",
    docs_url=None if DISABLE_DOCS else "/docs",
    redoc_url=None if DISABLE_DOCS else "/redoc",
    openapi_url=None if DISABLE_DOCS else "/openapi.json",
)

cors_env = os.getenv("CORS_ORIGINS", "").strip()
if cors_env:
    ALLOW_ORIGINS = [x.strip() for x in cors_env.split(",") if x.strip()]
else:
    ALLOW_ORIGINS = [
        "http://localhost:8001",
        "http://127.0.0.1:8001",
        "http://localhost:5500",
        "http://127.0.0.1:5500",
    ]

# file:// pages send Origin: null; allow it for local dev only.
ALLOW_NULL_ORIGIN = (os.getenv("ALLOW_NULL_ORIGIN", "false").strip().lower() in {"1", "true", "yes"})
if ALLOW_NULL_ORIGIN and "null" not in ALLOW_ORIGINS:
    ALLOW_ORIGINS.append("null")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOW_ORIGINS,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "X-API-Key", "X-Session-Id", "X-Monitor-Key"],
)

engine = RecruitmentEngine()

API_KEY = os.getenv("APP_API_KEY", "").strip()
API_KEY_REQUIRED = (os.getenv("API_KEY_REQUIRED", "false").strip().lower() in {"1", "true", "yes"})
MONITORING_API_KEY = os.getenv("MONITORING_API_KEY", "").strip()
MONITORING_KEY_REQUIRED = (os.getenv("MONITORING_KEY_REQUIRED", "true").strip().lower() in {"1", "true", "yes"})
MONITORING_ALLOWED_IPS = [x.strip() for x in os.getenv("MONITORING_ALLOWED_IPS", "").split(",") if x.strip()]
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", "5242880"))  # 5MB default
MAX_MESSAGE_BYTES = int(os.getenv("MAX_MESSAGE_BYTES", "20000"))
RATE_LIMIT_WINDOW_SEC = int(os.getenv("RATE_LIMIT_WINDOW_SEC", "60"))
RATE_LIMIT_MESSAGE_PER_WINDOW = int(os.getenv("RATE_LIMIT_MESSAGE_PER_WINDOW", "30"))
RATE_LIMIT_UPLOAD_PER_WINDOW = int(os.getenv("RATE_LIMIT_UPLOAD_PER_WINDOW", "10"))
TRUST_X_FORWARDED_FOR = (os.getenv("TRUST_X_FORWARDED_FOR", "false").strip().lower() in {"1", "true", "yes"})

_rate_buckets = defaultdict(deque)
_app_started_at = time.time()
_session_id_re = re.compile(r"^[A-Za-z0-9_-]{6,128}$")


def _client_ip(request: Request):
    if TRUST_X_FORWARDED_FOR:
        xff = request.headers.get("x-forwarded-for", "")
        if xff:
            return xff.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def _check_rate_limit(bucket_key: str, limit: int):
    now = time.time()
    q = _rate_buckets[bucket_key]
    while q and (now - q[0]) > RATE_LIMIT_WINDOW_SEC:
        q.popleft()
    if len(q) >= limit:
        return False
    q.append(now)
    return True


def _require_api_key(request: Request):
    if not API_KEY_REQUIRED:
        return None
    if not API_KEY:
        return JSONResponse(status_code=500, content={"error": "Server auth misconfiguration."})
    token = (request.headers.get("X-API-Key") or "").strip()
    if not secrets.compare_digest(token, API_KEY):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    return None


def _is_ip_in_allowlist(ip_text: str) -> bool:
    if not MONITORING_ALLOWED_IPS:
        return True
    try:
        ip_obj = ipaddress.ip_address((ip_text or "").strip())
    except ValueError:
        return False
    for token in MONITORING_ALLOWED_IPS:
        if token == "*":
            return True
        try:
            if "/" in token:
                if ip_obj in ipaddress.ip_network(token, strict=False):
                    return True
            elif ip_obj == ipaddress.ip_address(token):
                return True
        except ValueError:
            continue
    return False


def _require_monitoring_key(request: Request):
    if MONITORING_ALLOWED_IPS and not _is_ip_in_allowlist(_client_ip(request)):
        return JSONResponse(status_code=403, content={"error": "Admin source IP not allowed"})
    if not MONITORING_KEY_REQUIRED:
        return None
    if not MONITORING_API_KEY:
        return JSONResponse(status_code=500, content={"error": "Monitoring auth misconfiguration."})
    token = (request.headers.get("X-Monitor-Key") or "").strip()
    if not secrets.compare_digest(token, MONITORING_API_KEY):
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})
    return None


def _resolve_session_id(request: Request, explicit: Optional[str] = None) -> Optional[str]:
    """Body/form value, then X-Session-Id, then a fresh id. None means malformed."""
    sid = (explicit or request.headers.get("X-Session-Id") or "").strip()
    if not sid:
        return uuid.uuid4().hex
    return sid if _session_id_re.fullmatch(sid) else None


def _request_metadata(request: Request):
    return {
        "ip_address": _client_ip(request),
        "user_agent": (request.headers.get("user-agent") or "").strip()[:300],
    }


async def _read_json(request: Request):
    raw = await request.body()
    if len(raw) > MAX_MESSAGE_BYTES:
        return None, JSONResponse(status_code=413, content={"error": "Payload too large."})
    try:
        data = json.loads(raw.decode("utf-8", errors="strict") or "{}")
    except ValueError:
        return None, JSONResponse(status_code=400, content={"error": "Invalid JSON payload."})
    if not isinstance(data, dict):
        return None, JSONResponse(status_code=400, content={"error": "Invalid JSON payload."})
    return data, None


@app.middleware("http")
async def add_request_context(request: Request, call_next):
    request_id = (request.headers.get("X-Request-ID") or str(uuid.uuid4())).strip()[:128]
    request.state.request_id = request_id
    start = time.time()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception(
            "unhandled_exception request_id=%s method=%s path=%s ip=%s",
            request_id,
            request.method,
            request.url.path,
            _client_ip(request),
        )
        response = JSONResponse(status_code=500, content={"error": "Request processing failed.", "request_id": request_id})
    elapsed_ms = int((time.time() - start) * 1000)
    response.headers["X-Request-ID"] = request_id
    response.headers["X-Process-Time-Ms"] = str(elapsed_ms)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "no-referrer"
    logger.info(
        "request request_id=%s method=%s path=%s status=%s duration_ms=%s ip=%s",
        request_id,
        request.method,
        request.url.path,
        getattr(response, "status_code", "?"),
        elapsed_ms,
        _client_ip(request),
    )
    return response


@app.get("/health")
async def health():
    return {"ok": True}


@app.get("/status")
async def get_status(request: Request):
    auth_err = _require_api_key(request)
    if auth_err:
        return auth_err
    info = engine.get_status_info()
    info["api_uptime_sec"] = int(time.time() - _app_started_at)
    return info


@app.post("/chat/message")
async def chat_message(request: Request):
    auth_err = _require_api_key(request)
    if auth_err:
        return auth_err
    ip = _client_ip(request)
    if not _check_rate_limit(f"message:{ip}", RATE_LIMIT_MESSAGE_PER_WINDOW):
        return JSONResponse(status_code=429, content={"error": "Rate limit exceeded. Try again shortly."})

    data, err = await _read_json(request)
    if err:
        return err
    message = data.get("message")
    if not isinstance(message, str) or not message.strip():
        return JSONResponse(status_code=400, content={"error": "Field 'message' must be a non-empty string."})
    session_id = _resolve_session_id(request, data.get("session_id"))
    if session_id is None:
        return JSONResponse(status_code=400, content={"error": "Invalid session id."})

    result = engine.process_message(message, session_id, _request_metadata(request))
    return JSONResponse(content=jsonable_encoder(result.to_dict()))


@app.post("/chat/upload-cv")
async def upload_cv(request: Request, file: UploadFile = File(...), session_id: Optional[str] = Form(None)):
    auth_err = _require_api_key(request)
    if auth_err:
        return auth_err
    ip = _client_ip(request)
    if not _check_rate_limit(f"upload:{ip}", RATE_LIMIT_UPLOAD_PER_WINDOW):
        return JSONResponse(status_code=429, content={"ok": False, "message": "Rate limit exceeded. Try again later."})

    if not file.filename:
        return JSONResponse(status_code=400, content={"ok": False, "message": "Missing file name."})
    sid = _resolve_session_id(request, session_id)
    if sid is None:
        return JSONResponse(status_code=400, content={"ok": False, "message": "Invalid session id."})

    content = await file.read()
    if len(content) > MAX_UPLOAD_BYTES:
        return JSONResponse(status_code=413, content={"ok": False, "message": "Uploaded file is too large."})
    if not content:
        return JSONResponse(status_code=400, content={"ok": False, "message": "Uploaded file is empty."})

    result = engine.handle_document_upload(content, file.filename, file.content_type, sid)
    body = result.to_dict()
    body["ok"] = result.success
    body["session_id"] = sid
    return JSONResponse(status_code=200 if result.success else 400, content=jsonable_encoder(body))


@app.get("/chat/session/{session_id}")
async def get_session(request: Request, session_id: str):
    auth_err = _require_api_key(request)
    if auth_err:
        return auth_err
    session = engine.get_session(session_id)
    if session is None:
        return JSONResponse(status_code=404, content={"error": "Session not found."})
    return JSONResponse(content=jsonable_encoder(session.to_dict()))


@app.post("/chat/session/{session_id}/analyze")
async def analyze_session(request: Request, session_id: str):
    auth_err = _require_api_key(request)
    if auth_err:
        return auth_err
    data, err = await _read_json(request)
    if err:
        return err
    requirements = None
    if data:
        try:
            requirements = JobRequirements(
                required_skills=[str(s) for s in data.get("required_skills") or []],
                preferred_skills=[str(s) for s in data.get("preferred_skills") or []],
                min_experience=float(data.get("min_experience") or 0),
            )
        except (TypeError, ValueError):
            return JSONResponse(status_code=400, content={"error": "Invalid requirements payload."})

    if engine.get_session(session_id) is None:
        return JSONResponse(status_code=404, content={"error": "Session not found."})
    analysis = engine.analyze_candidate(session_id, requirements)
    if analysis is None:
        return JSONResponse(status_code=400, content={"error": "No candidate profile for this session. Upload a CV first."})
    return JSONResponse(content=jsonable_encoder(analysis))


@app.post("/chat/end-session")
async def end_session(request: Request):
    auth_err = _require_api_key(request)
    if auth_err:
        return auth_err
    data, err = await _read_json(request)
    if err:
        return err
    session_id = (data.get("session_id") or request.headers.get("X-Session-Id") or "").strip()
    summary = engine.end_session(session_id) if session_id else None
    if summary is None:
        return JSONResponse(status_code=404, content={"error": "Session not found."})
    return JSONResponse(content=jsonable_encoder({"ok": True, "summary": summary}))


@app.post("/security/check")
async def security_check(request: Request):
    auth_err = _require_api_key(request)
    if auth_err:
        return auth_err
    ip = _client_ip(request)
    if not _check_rate_limit(f"message:{ip}", RATE_LIMIT_MESSAGE_PER_WINDOW):
        return JSONResponse(status_code=429, content={"error": "Rate limit exceeded. Try again shortly."})
    data, err = await _read_json(request)
    if err:
        return err
    message = data.get("message")
    if not isinstance(message, str):
        return JSONResponse(status_code=400, content={"error": "Field 'message' must be a string."})

    detector = engine.jailbreak_detector
    ctx = ThreatContext(ip_address=ip, user_agent=_request_metadata(request)["user_agent"])
    assessment = detector.assess(message, ctx)
    analysis = detector.analyze_threat(message, ctx, assessment=assessment)
    return JSONResponse(
        content=jsonable_encoder(
            {
                "assessment": assessment.to_dict(),
                "analysis": {
                    "overall_risk": analysis.overall_risk,
                    "risk_score": analysis.risk_score,
                    "threat_vectors": analysis.threat_vectors,
                    "mitigation_suggestions": analysis.mitigation_suggestions,
                    "recommended_actions": analysis.recommended_actions,
                    "contextual_factors": analysis.contextual_factors,
                },
            }
        )
    )


@app.get("/admin/sessions")
async def admin_sessions(request: Request, limit: int = 200):
    auth_err = _require_monitoring_key(request)
    if auth_err:
        return auth_err
    limit = max(1, min(limit, 2000))
    sessions = sorted(engine.list_sessions(), key=lambda s: s.last_activity)[-limit:]
    items = [s.to_dict(include_messages=False) for s in sessions]
    return JSONResponse(content=jsonable_encoder({"count": len(items), "items": items}))


@app.post("/admin/sessions/cleanup")
async def admin_cleanup(request: Request):
    auth_err = _require_monitoring_key(request)
    if auth_err:
        return auth_err
    removed = engine.cleanup_sessions()
    return {"removed": len(removed), "session_ids": removed}


@app.get("/admin/analytics")
async def admin_analytics(request: Request):
    auth_err = _require_monitoring_key(request)
    if auth_err:
        return auth_err
    return JSONResponse(content=jsonable_encoder(engine.get_analytics()))


@app.get("/admin/security/stats")
async def admin_security_stats(request: Request):
    auth_err = _require_monitoring_key(request)
    if auth_err:
        return auth_err
    return JSONResponse(content=jsonable_encoder(engine.get_security_stats()))


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8001)
