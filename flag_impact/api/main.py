"""
HTTP API for the feature flag impact analyzer.
"""

from contextlib import asynccontextmanager
from typing import List

from fastapi import APIRouter, Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from .schemas import (
    AnalyzeRequest,
    AnalyzeResponse,
    ChangeResponse,
    ChatRequest,
    ChatResponse,
    FlagCreateRequest,
    HealthResponse,
    MetricsResponse,
)
from .socket import router as socket_router
from .dependencies import get_agent
from ..agents.orchestrator import FeatureFlagAgent
from ..core.config import SERVICE_NAME, VERSION, debug_enabled, validate_config
from ..core.db import health_check, init_db
from ..core.exceptions import AnomalyNotFoundError, FlagAlreadyExistsError, FlagNotFoundError
from ..core.schema import Anomaly, FeatureFlag, FlagChange, ImpactMetrics, ImpactPrediction, utc_now_iso
from ..util.logging import logger


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    for issue in validate_config():
        logger.warning(f"Configuration issue: {issue}")
    yield


app = FastAPI(
    title=SERVICE_NAME,
    version=VERSION,
    description="Feature flag change tracking with anomaly detection and LLM impact predictions",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None,
    lifespan=lifespan,
)

# Open CORS for browser dashboards
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

router = APIRouter()


@app.get("/")
def service_info():
    return {
        "name": SERVICE_NAME,
        "version": VERSION,
        "status": "healthy",
        "timestamp": utc_now_iso(),
        "endpoints": {
            "api": "/api/*",
            "chat": "/api/chat",
            "flags": "/api/flags",
            "websocket": "/ws",
        },
    }


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(agent: FeatureFlagAgent = Depends(get_agent)):
    """Check system health, including the model backend."""
    db_health = health_check()
    if not db_health:
        return HealthResponse(status="unhealthy", version=VERSION, db_health=False,
                              flag_count=0, active_sessions=len(agent.sessions),
                              llm=agent.llm.get_status(), timestamp=utc_now_iso())

    status = agent.get_status()
    return HealthResponse(
        status="healthy",
        version=VERSION,
        db_health=True,
        flag_count=status["flag_count"],
        active_sessions=status["active_sessions"],
        llm=status["llm"],
        timestamp=utc_now_iso(),
    )


@router.get("/flags", response_model=List[FeatureFlag])
def list_flags(agent: FeatureFlagAgent = Depends(get_agent)):
    return agent.list_flags()


@router.post("/flags", response_model=FeatureFlag, status_code=201)
def create_flag(request: FlagCreateRequest, agent: FeatureFlagAgent = Depends(get_agent)):
    try:
        return agent.create_flag(
            name=request.name,
            flag_id=request.id,
            description=request.description,
            enabled=request.enabled,
            rollout_percentage=request.rollout_percentage,
            target_environment=request.target_environment,
            owner=request.owner,
            tags=request.tags,
        )
    except FlagAlreadyExistsError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/flags/change", response_model=ChangeResponse)
def record_change(change: FlagChange, agent: FeatureFlagAgent = Depends(get_agent)):
    recorded, prediction = agent.record_change(change)
    return ChangeResponse(change=recorded, prediction=prediction)


@router.post("/metrics", response_model=MetricsResponse)
def record_metrics(metrics: ImpactMetrics, agent: FeatureFlagAgent = Depends(get_agent)):
    return MetricsResponse(success=True, metrics=agent.record_metrics(metrics))


@router.post("/chat", response_model=ChatResponse, response_model_exclude_none=True)
def chat(request: ChatRequest, agent: FeatureFlagAgent = Depends(get_agent)):
    return agent.chat(request.message, request.session_id)


@router.post("/analyze", response_model=AnalyzeResponse)
def analyze_flag(request: AnalyzeRequest, agent: FeatureFlagAgent = Depends(get_agent)):
    try:
        flag, prediction = agent.analyze_flag(request.flag_id)
    except FlagNotFoundError:
        raise HTTPException(status_code=404, detail="Flag not found")
    return AnalyzeResponse(flag=flag, prediction=prediction)


@router.get("/anomalies", response_model=List[Anomaly])
def list_anomalies(agent: FeatureFlagAgent = Depends(get_agent)):
    return agent.list_anomalies()


@router.post("/anomalies/{anomaly_id}/resolve", response_model=Anomaly)
def resolve_anomaly(anomaly_id: str, agent: FeatureFlagAgent = Depends(get_agent)):
    try:
        return agent.resolve_anomaly(anomaly_id)
    except AnomalyNotFoundError:
        raise HTTPException(status_code=404, detail="Anomaly not found")


@router.get("/predictions", response_model=List[ImpactPrediction])
def list_predictions(agent: FeatureFlagAgent = Depends(get_agent)):
    return agent.list_predictions()


app.include_router(router, prefix="/api")
app.include_router(socket_router)
