from fastapi import FastAPI
from dotenv import load_dotenv
load_dotenv(dotenv_path="backend/.env", override=False)
from contextlib import asynccontextmanager
from fastapi.middleware.cors import CORSMiddleware
from fastapi import Request
from fastapi.responses import JSONResponse
from sqlalchemy import func
import logging, time, uuid

from .routers import triage, comments, orders, analytics
from .db.database import SessionLocal, ensure_schema
from .models.correspondence_model import EmailCorrespondence
from .core.logging import init_logging
from .services.llm_client import llm_diagnostics


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_logging()
    ensure_schema()
    logging.getLogger(__name__).info("startup_complete", extra={"provider": llm_diagnostics()["provider"]})
    yield


app = FastAPI(title="Email Responder Triage Service", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(triage.router, prefix="/api/responder", tags=["responder"])
app.include_router(comments.router, prefix="/api/responder", tags=["comments"])
app.include_router(orders.router, prefix="/api/orders", tags=["orders"])
app.include_router(analytics.router, prefix="/api/analytics", tags=["analytics"])


@app.get("/health")
def health():
    db = SessionLocal()
    try:
        total = db.query(func.count(EmailCorrespondence.id)).scalar() or 0
    finally:
        db.close()
    ai = llm_diagnostics()
    return {"status": "ok", "llm": {"provider": ai["provider"], "has_key": ai["has_key"]}, "emails": total}


@app.middleware("http")
async def timing_logger(request: Request, call_next):
    trace_id = request.headers.get("X-Trace-Id", str(uuid.uuid4())[:8])
    start = time.perf_counter()
    try:
        response = await call_next(request)
        duration = (time.perf_counter()-start)*1000
        logging.getLogger().info(
            f"{request.method} {request.url.path} {response.status_code} {duration:.1f}ms",
            extra={"trace_id": trace_id, "method": request.method, "path": request.url.path, "status": response.status_code, "duration_ms": round(duration,1)}
        )
        response.headers['X-Trace-Id'] = trace_id
        return response
    except Exception as exc:
        duration = (time.perf_counter()-start)*1000
        logging.getLogger().error(
            f"ERR {request.method} {request.url.path} {type(exc).__name__}",
            exc_info=exc,
            extra={"trace_id": trace_id, "method": request.method, "path": request.url.path, "status": 500, "duration_ms": round(duration,1)}
        )
        return JSONResponse(status_code=500, content={"detail": "Internal Server Error", "trace_id": trace_id})
