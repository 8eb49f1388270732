"""
FastAPI Web Server for PulseCore.

Provides the local command surface:
- Live telemetry state and event stream
- Settings and operating mode control
- On-demand ping diagnostics
- Speed-test history queries and CSV export
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, StreamingResponse
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
import uvicorn

from ..collectors.hardware_info import collect_hardware_info
from ..collectors.local_collector import ResourceSampler
from ..core.config import Config
from ..core.database import HistoryStore
from ..core.errors import ProbeError, ProbeTimeoutError, StorageError
from ..core.events import EventHub
from ..core.models import (
    AppSettings,
    ExportResult,
    HardwareInfo,
    HistoryFilter,
    HistoryPage,
    Mode,
    PingResult,
    SpeedTestResult,
    TimeRange,
    utc_now,
)
from ..core.scheduler import TelemetryScheduler
from ..core.state import AppState
from ..diagnostics.ping_probe import NetworkProbe, SubprocessPingRunner
from ..services.mqtt_broker import MQTTBrokerService


logger = logging.getLogger(__name__)

# Global state (will be initialized in lifespan)
config: Optional[Config] = None
store: Optional[HistoryStore] = None
state: Optional[AppState] = None
hub: Optional[EventHub] = None
scheduler: Optional[TelemetryScheduler] = None
probe: Optional[NetworkProbe] = None
mqtt_service: Optional[MQTTBrokerService] = None
_hardware_info: Optional[HardwareInfo] = None


# Pydantic models for API
class SettingsUpdate(BaseModel):
    refresh_rate_ms: int = Field(ge=1)
    low_power_rate_ms: int = Field(ge=1)
    history_retention_days: int = Field(default=30, ge=1)
    ping_target: str = "1.1.1.1"
    ping_count: int = Field(default=10, ge=1)
    overlay_enabled: bool = False
    theme: str = "dark"


class ModeRequest(BaseModel):
    low_power: bool


class PingRequest(BaseModel):
    target: Optional[str] = None
    count: Optional[int] = None


class SpeedTestIn(BaseModel):
    task_id: str = Field(min_length=1)
    endpoint: str
    download_mbps: float
    upload_mbps: Optional[float] = None
    latency_ms: Optional[float] = None
    jitter_ms: Optional[float] = None
    loss_pct: Optional[float] = None
    started_at: datetime
    duration_ms: int = Field(ge=0)


class ExportRequest(BaseModel):
    filename: Optional[str] = None
    from_: Optional[datetime] = Field(default=None, alias="from")
    to: Optional[datetime] = None


def build_components(app_config: Config):
    """Create the store, state, hub, sampler, scheduler and probe from config."""
    global store, state, hub, scheduler, probe

    store = HistoryStore(app_config.storage.db_path, app_config.storage.busy_timeout_seconds)
    state = AppState(
        store,
        recent_history_size=app_config.telemetry.recent_history_size,
        mode=Mode.LOW_POWER if app_config.telemetry.start_low_power else Mode.NORMAL,
    )
    state.load()
    hub = EventHub(max_queue=app_config.web.stream_queue_size)
    scheduler = TelemetryScheduler(
        ResourceSampler(),
        store,
        state,
        hub,
        prune_every_ticks=app_config.telemetry.prune_every_ticks,
        min_interval_ms=app_config.telemetry.min_interval_ms,
        max_interval_ms=app_config.telemetry.max_interval_ms,
    )
    probe = NetworkProbe(
        SubprocessPingRunner(
            timeout=app_config.probe.timeout_seconds,
            command=app_config.probe.ping_command,
        )
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global config, mqtt_service

    # Startup
    logger.info("Starting web server...")

    # Initialize with default config if not set
    if config is None:
        from ..core.config import get_default_config_path
        config_path = get_default_config_path()
        logger.info(f"Loading configuration from {config_path}")
        config = Config.from_yaml(config_path)

    build_components(config)
    scheduler.start()

    mqtt_service = MQTTBrokerService(config, hub)
    await mqtt_service.start()

    logger.info("Web server started")

    yield

    # Shutdown
    logger.info("Shutting down web server...")
    await scheduler.stop()
    if mqtt_service:
        await mqtt_service.stop()
    logger.info("Web server shut down")


# Create FastAPI app
app = FastAPI(
    title="PulseCore",
    description="Desktop telemetry and network diagnostics",
    version="1.0.0",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    logger.error(f"Storage error on {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"detail": f"storage error: {exc}"})


@app.exception_handler(ProbeError)
async def probe_error_handler(request: Request, exc: ProbeError):
    status = 504 if isinstance(exc, ProbeTimeoutError) else 502
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def _hardware() -> HardwareInfo:
    global _hardware_info
    if _hardware_info is None:
        _hardware_info = collect_hardware_info()
    return _hardware_info


# API Endpoints

@app.get("/api/state")
def get_initial_state(limit: int = Query(default=60, ge=0, le=1000)):
    """Current settings, mode, recent snapshots and hardware identity."""
    return {
        "settings": state.get(),
        "mode": state.mode,
        "low_power": state.mode == Mode.LOW_POWER,
        "recent": state.recent_snapshots(limit),
        "hardware": _hardware(),
        "ticks": scheduler.tick_count,
    }


@app.get("/api/hardware")
def get_hardware_info() -> HardwareInfo:
    return _hardware()


@app.get("/api/settings")
def get_settings() -> AppSettings:
    return state.get()


@app.put("/api/settings")
def update_settings(update: SettingsUpdate) -> AppSettings:
    """Replace the settings record in full."""
    settings = AppSettings(**update.model_dump())
    state.set(settings)
    return settings


@app.post("/api/mode")
async def set_low_power_mode(request: ModeRequest):
    state.set_mode(Mode.LOW_POWER if request.low_power else Mode.NORMAL)
    return {"mode": state.mode, "low_power": request.low_power}


@app.post("/api/ping")
async def run_ping_test(request: PingRequest) -> PingResult:
    """Run a ping probe; defaults come from settings."""
    settings = state.get()
    target = request.target or settings.ping_target
    count = request.count if request.count is not None else settings.ping_count
    return await probe.measure(target, count)


@app.get("/api/history")
def query_history(
    page: int = Query(default=1),
    page_size: int = Query(default=20),
    from_: Optional[datetime] = Query(default=None, alias="from"),
    to: Optional[datetime] = Query(default=None),
) -> HistoryPage:
    return store.query(HistoryFilter(page=page, page_size=page_size, from_=from_, to=to))


@app.post("/api/history")
def insert_history(result: SpeedTestIn) -> SpeedTestResult:
    """Record a speed-test result, replacing any result with the same task id."""
    record = SpeedTestResult(**result.model_dump())
    store.insert(record)
    return record


@app.post("/api/history/export")
def export_history_csv(request: ExportRequest) -> ExportResult:
    """Export history to a CSV file inside the configured export directory."""
    filename = request.filename or f"history-{utc_now().strftime('%Y%m%d-%H%M%S')}.csv"
    if Path(filename).name != filename or filename in (".", ".."):
        raise HTTPException(status_code=400, detail="filename must not contain a path")
    path = Path(config.storage.export_dir) / filename
    return store.export_csv(str(path), TimeRange(from_=request.from_, to=request.to))


@app.get("/api/stream")
async def stream_updates():
    """Server-sent events stream of published events."""
    queue = hub.subscribe()

    async def event_generator():
        try:
            while True:
                event = await queue.get()
                data = json.dumps(jsonable_encoder(event.payload))
                yield f"event: {event.name}\ndata: {data}\n\n"
        finally:
            hub.unsubscribe(queue)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )


@app.get("/api/mqtt/status")
async def get_mqtt_status():
    """Get MQTT forwarding status."""
    if mqtt_service is None:
        return {"enabled": False, "connected": False, "published": 0}
    return {
        "enabled": config.mqtt.enabled,
        "connected": mqtt_service.connected,
        "broker_url": mqtt_service.broker_url,
        "published": mqtt_service.published,
    }


def start_web_server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    app_config: Optional[Config] = None,
):
    """Start the web server."""
    global config

    if app_config:
        config = app_config
    if config is None:
        config = Config()

    host = host or config.web.host
    port = port or config.web.port
    logger.info(f"Starting web server on http://{host}:{port}")

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
    )
