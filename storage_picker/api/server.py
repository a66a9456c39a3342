"""FastAPI surface over the placement runtime."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..config import PickerConfig
from ..errors import ConfigurationError, PlacementError, RefreshError, ValidationErrors
from ..runtime import PickerRuntime
from ..services.sources import JsonFileTopologySource, TopologySource
from ..services.stats import describe_view

logger = logging.getLogger(__name__)


def _bootstrap_from_env() -> PickerRuntime:
    config_path = os.environ.get("STORAGE_PICKER_CONFIG")
    config = PickerConfig.load(config_path) if config_path else PickerConfig.default()
    topology_path = os.environ.get("STORAGE_PICKER_TOPOLOGY_FILE")
    source: Optional[TopologySource] = JsonFileTopologySource(topology_path) if topology_path else None
    return PickerRuntime.bootstrap(config, source)


runtime = _bootstrap_from_env()
_background_refresh = os.environ.get("STORAGE_PICKER_BACKGROUND_REFRESH", "1").strip().lower() not in {"", "0", "off"}


@asynccontextmanager
async def _lifespan(app: FastAPI):
    active = runtime
    if _background_refresh and os.environ.get("STORAGE_PICKER_TOPOLOGY_FILE"):
        active.refresher.start()
        logger.info("topology refresher running every %ss", active.config.refresh.interval_seconds)
    try:
        yield
    finally:
        active.refresher.stop(timeout=5)


app = FastAPI(title="Storage Picker API", version="0.1.0", lifespan=_lifespan)


class _CamelAliasModel(BaseModel):
    class Config:
        allow_population_by_field_name = True
        populate_by_name = True


class ChooseRequest(_CamelAliasModel):
    replicas: int = Field(default=2)
    size_bytes: int = Field(alias="size")
    operator: bool = Field(default=False)


def _current_view():
    try:
        return runtime.snapshot()
    except RefreshError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc


@app.get("/v1/topology")
async def get_topology():
    return describe_view(_current_view())


@app.get("/v1/topology/snapshot")
async def get_topology_snapshot():
    return _current_view().to_dict()


@app.post("/v1/topology:refresh")
async def refresh_topology():
    try:
        view = runtime.refresher.refresh()
    except RefreshError as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    except ValidationErrors as exc:
        raise HTTPException(status_code=422, detail=[error.to_dict() for error in exc.errors]) from exc
    return {
        "generation": view.generation,
        "datacenters": view.datacenters(operator=True),
        "rejected": [error.to_dict() for error in view.errors],
        "stale": view.stale,
    }


@app.post("/v1/placement:choose")
async def choose_placement(payload: ChooseRequest):
    view = _current_view()
    try:
        result = runtime.picker.choose(payload.replicas, payload.size_bytes, view=view, operator=payload.operator)
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except PlacementError as exc:
        body = {"error": exc.to_dict(), "summary": runtime.summarize(exc, view=view).to_dict()}
        return JSONResponse(status_code=507, content=body)
    return {**result.to_dict(), "summary": runtime.summarize(result, view=view).to_dict()}

