"""
SUNTRENIA API LAYER
FastAPI endpoints serving cached incident news, statistics, AI briefings
and state risk assessments
"""

import logging
from typing import List, Optional, Dict, Any

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from .pipeline import IncidentPipeline
from .shared.resilience import OPEN, guard_status
from .stats import STATE_ISO_CODES

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


# =============================================================================
# PYDANTIC MODELS
# =============================================================================

class EnrichmentOut(BaseModel):
    category: str
    severity: str
    deaths: int
    injuries: int
    abducted: int
    perpetrators: str
    locations: List[str]
    extracted_facts: List[str]
    fallback: bool = False


class NewsItemOut(BaseModel):
    title: str
    link: str
    summary: str
    source: str
    timestamp: str
    category: str
    raw_content: str = ""
    normalized_title: str
    enrichment: Optional[EnrichmentOut] = None


class NewsResponse(BaseModel):
    items: List[NewsItemOut]
    metadata: Dict[str, Any]


class StatsResponse(BaseModel):
    total_incidents: int
    by_state: Dict[str, int]
    by_category: Dict[str, int]
    by_date: Dict[str, int]
    abduction_count: int
    estimated_fatalities: int
    states_affected: int


class AffectedState(BaseModel):
    name: str
    iso_code: str
    incidents: int


class StatesResponse(BaseModel):
    states: List[AffectedState]
    count: int


class BriefingResponse(BaseModel):
    briefing: Optional[str] = None
    week: str
    stats: StatsResponse
    affected_states: List[str]
    generated_at: str


class StateRiskResponse(BaseModel):
    state: str
    risk_level: str
    analysis: str
    incident_count: int
    iso_code: str


class AnalysisOut(BaseModel):
    risk_level: str
    analysis: str
    incident_count: int


class AnalysisResponse(BaseModel):
    analysis: Optional[AnalysisOut] = None
    generated_at: str


class PatternsResponse(BaseModel):
    patterns: Optional[str] = None
    week: str
    current_week_count: int
    previous_week_count: int
    generated_at: str


class AlertOut(BaseModel):
    title: str
    link: str
    severity: str
    alert: str


class AlertsResponse(BaseModel):
    alerts: List[AlertOut]
    count: int
    generated_at: str


class ReportResponse(BaseModel):
    incidents: List[NewsItemOut]
    stats: StatsResponse
    affected_states: List[str]
    narrative: Optional[str] = None
    generated_at: str
    metadata: Dict[str, Any]


# =============================================================================
# APP FACTORY
# =============================================================================

def create_app(pipeline: Optional[IncidentPipeline] = None) -> FastAPI:
    app = FastAPI(
        title="Suntrenia Security Intelligence API",
        description="Nigerian security-incident aggregation, deduplication and statistics",
        version=API_VERSION,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET"],
        allow_headers=["*"],
    )
    app.state.pipeline = pipeline or IncidentPipeline()

    def get_pipeline(request: Request) -> IncidentPipeline:
        return request.app.state.pipeline

    @app.get("/")
    async def root():
        return {
            "service": "Suntrenia Security Intelligence",
            "version": API_VERSION,
            "status": "operational",
            "endpoints": [
                "/api/news",
                "/api/news/stats",
                "/api/states",
                "/api/news/enriched",
                "/api/news/briefing",
                "/api/news/analysis",
                "/api/news/patterns",
                "/api/alerts",
                "/api/states/{state}/risk",
                "/api/report",
                "/health",
            ],
        }

    @app.get("/api/news", response_model=NewsResponse)
    async def get_news(request: Request):
        return await get_pipeline(request).get_news()

    @app.get("/api/news/stats", response_model=StatsResponse)
    async def get_stats(request: Request):
        stats = await get_pipeline(request).get_aggregate_stats()
        return stats.to_dict()

    @app.get("/api/states", response_model=StatesResponse)
    async def get_states(request: Request):
        stats = await get_pipeline(request).get_aggregate_stats()
        states = [
            {"name": name, "iso_code": STATE_ISO_CODES.get(name, ""), "incidents": count}
            for name, count in stats.by_state.items()
        ]
        return {"states": states, "count": len(states)}

    @app.get("/api/news/enriched", response_model=NewsResponse)
    async def get_enriched_news(request: Request):
        return await get_pipeline(request).get_enriched_news()

    @app.get("/api/news/briefing", response_model=BriefingResponse)
    async def get_briefing(request: Request):
        return await get_pipeline(request).get_weekly_briefing()

    @app.get("/api/news/analysis", response_model=AnalysisResponse)
    async def get_analysis(request: Request):
        return await get_pipeline(request).get_analysis()

    @app.get("/api/news/patterns", response_model=PatternsResponse)
    async def get_patterns(request: Request):
        return await get_pipeline(request).get_patterns()

    @app.get("/api/alerts", response_model=AlertsResponse)
    async def get_alerts(request: Request):
        return await get_pipeline(request).get_alerts()

    @app.get("/api/states/{state}/risk", response_model=StateRiskResponse)
    async def get_state_risk(state: str, request: Request):
        assessment = await get_pipeline(request).get_state_risk(state)
        if assessment is None:
            raise HTTPException(status_code=404, detail=f"Unknown Nigerian state: {state}")
        return assessment.to_dict()

    @app.get("/api/report", response_model=ReportResponse)
    async def get_report(request: Request, top: int = Query(10, ge=1, le=100)):
        return await get_pipeline(request).build_report(top_n=top)

    @app.get("/health")
    async def health_check():
        guards = guard_status()
        unhealthy = [key for key, snapshot in guards.items() if not snapshot["healthy"]]
        open_circuits = [key for key, snapshot in guards.items() if snapshot["state"] == OPEN]
        return {
            "status": "degraded" if unhealthy or open_circuits else "healthy",
            "unhealthy_sources": unhealthy,
            "open_circuits": open_circuits,
            "details": guards,
        }

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
