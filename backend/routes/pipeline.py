"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SIGNATURE8 CRM - Routes Pipeline (kanban)                                   ║
║                                                                              ║
║  Surface HTTP du Pipeline Store: colonnes, glisser-déposer, broadcast        ║
║  Le store est unique par process (app.state.pipeline_store)                  ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel
from typing import Any, Dict, List, Optional
import httpx
import logging

from models import (
    STAGE_ORDER,
    PipelineRecord,
    StageUpdatedEvent,
    get_stage_label,
    get_stage_progress,
    resolve_bucket,
)
from services.event_bus import STAGE_UPDATED
from services.pipeline_filters import ALL, BoardFilters
from services.pipeline_store import PipelineStore
from services.stage_history import (
    calculate_duration,
    format_duration_detailed,
    get_current_stage,
    get_stage_display_duration,
    get_stage_duration,
)

logger = logging.getLogger("routes.pipeline")

router = APIRouter(prefix="/pipeline", tags=["Pipeline"])


class DragStartBody(BaseModel):
    recordId: str


class DragHoverBody(BaseModel):
    bucketId: str


class DropBody(BaseModel):
    recordId: str
    bucketId: str
    changedBy: str = "Utilisateur"


def get_store(request: Request) -> PipelineStore:
    return request.app.state.pipeline_store


def _dump(records: List[PipelineRecord]) -> List[Dict[str, Any]]:
    return [r.model_dump(mode="json") for r in records]


def _drag_state(store: PipelineStore) -> Dict[str, Any]:
    placeholder = store.placeholder
    return {
        "activeId": store.drag.active_id,
        "pendingId": store.pending_id,
        "pendingOriginStage": store.pending_origin_stage.value if store.pending_origin_stage else None,
        "placeholderBucket": store.drag.placeholder_bucket,
        "placeholder": placeholder.model_dump(mode="json") if placeholder else None,
    }


# ==================== LECTURE ====================

@router.get("/stages")
async def list_stages():
    """Étapes canoniques, dans l'ordre des colonnes"""
    return {
        "stages": [
            {
                "value": stage.value,
                "label": get_stage_label(stage),
                "progress": get_stage_progress(stage),
            }
            for stage in STAGE_ORDER
        ]
    }


@router.get("/board")
async def get_board(
    q: Optional[str] = Query(None, description="Recherche texte"),
    architecte: str = ALL,
    statut: str = ALL,
    ville: str = ALL,
    type_projet: str = ALL,
    store: PipelineStore = Depends(get_store),
):
    filters = BoardFilters(architecte=architecte, statut=statut, ville=ville, type_projet=type_projet)
    board = store.get_board(search=q, filters=filters)
    return {
        "buckets": {bucket: _dump(records) for bucket, records in board.items()},
        "count": sum(len(records) for records in board.values()),
        "drag": _drag_state(store),
    }


@router.get("/buckets/{bucket_id}")
async def get_bucket(bucket_id: str, store: PipelineStore = Depends(get_store)):
    if resolve_bucket(bucket_id) is None:
        raise HTTPException(status_code=404, detail=f"Colonne inconnue: {bucket_id}")
    records = store.get_bucket(bucket_id)
    return {"bucket": bucket_id, "records": _dump(records), "count": len(records)}


@router.get("/records/{record_id}/history")
async def get_record_history(record_id: str, store: PipelineStore = Depends(get_store)):
    """
    Historique des étapes d'un projet avec la durée passée dans chacune.
    `durations` donne la durée par colonne (null si l'étape n'a jamais été traversée).
    """
    history = await store.api.get_stage_history(record_id)
    active = get_current_stage(history)

    record = store.get_record(record_id)
    if record is not None:
        canonical = record.canonical_stage()
        current_stage = canonical.value if canonical else record.stage
    else:
        current_stage = active.stageName if active else None

    entries = []
    for entry in history:
        is_active = entry is active and entry.stageName == current_stage
        seconds = (
            entry.durationSeconds
            if entry.durationSeconds is not None
            else calculate_duration(entry.startedAt, entry.endedAt)
        )
        entries.append({
            **entry.model_dump(),
            "label": get_stage_label(entry.stageName),
            "isActive": is_active,
            "duration": get_stage_display_duration(
                is_active, entry.startedAt, entry.endedAt, entry.durationSeconds
            ),
            "durationDetailed": format_duration_detailed(max(seconds, 0)),
        })

    return {
        "recordId": record_id,
        "currentStage": current_stage,
        "history": entries,
        "durations": {
            stage.value: get_stage_duration(stage.value, history, current_stage)
            for stage in STAGE_ORDER
        },
    }


# ==================== SYNCHRONISATION ====================

@router.post("/sync")
async def sync_from_parent(records: List[Dict[str, Any]], store: PipelineStore = Depends(get_store)):
    """Refresh poussé par le parent (collection complète)"""
    applied = store.sync_from_parent(records)
    return {"applied": applied, "count": len(store.records)}


@router.post("/refresh")
async def refresh_from_api(store: PipelineStore = Depends(get_store)):
    """Recharge la collection depuis l'API CRM puis synchronise"""
    try:
        records = await store.api.fetch_records()
    except httpx.HTTPError as e:
        logger.error(f"[PIPELINE] Refresh failed: {e}")
        raise HTTPException(status_code=502, detail=f"API CRM indisponible: {e}")
    applied = store.sync_from_parent(records)
    return {"applied": applied, "count": len(store.records)}


# ==================== GLISSER-DÉPOSER ====================

@router.post("/drag/start")
async def drag_start(body: DragStartBody, store: PipelineStore = Depends(get_store)):
    if not store.begin_drag(body.recordId):
        raise HTTPException(status_code=409, detail="Déplacement impossible pour ce projet")
    return {"success": True, "drag": _drag_state(store)}


@router.post("/drag/hover")
async def drag_hover(body: DragHoverBody, store: PipelineStore = Depends(get_store)):
    changed = store.on_drag_hover(body.bucketId)
    return {"changed": changed, "drag": _drag_state(store)}


@router.post("/drag/cancel")
async def drag_cancel(store: PipelineStore = Depends(get_store)):
    cancelled = store.cancel_drag()
    return {"cancelled": cancelled, "drag": _drag_state(store)}


@router.post("/drag/drop")
async def drag_drop(body: DropBody, store: PipelineStore = Depends(get_store)):
    outcome = await store.commit_drop(body.recordId, body.bucketId, body.changedBy)
    record = store.get_record(body.recordId)
    return {
        "outcome": outcome.value,
        "record": record.model_dump(mode="json") if record else None,
    }


# ==================== BROADCAST ====================

@router.post("/events/stage-updated")
async def publish_stage_updated(event: StageUpdatedEvent, request: Request):
    """Diffuse un changement d'étape fait par une autre vue"""
    delivered = request.app.state.event_bus.publish(STAGE_UPDATED, event)
    return {"delivered": delivered}


@router.get("/notifications")
async def list_notifications(limit: int = 20, store: PipelineStore = Depends(get_store)):
    return {"notifications": [n.model_dump() for n in store.notifier.recent(limit)]}
