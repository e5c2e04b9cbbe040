"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SIGNATURE8 CRM - Models Package                                             ║
║                                                                              ║
║  Exporte tous les modèles pour import facile                                 ║
║  from models import PipelineStage, PipelineRecord, resolve_stage, etc.       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from .stage import (
    PipelineStage,
    STAGE_ORDER,
    VALID_STAGES,
    STAGE_ALIASES,
    LEGACY_STAGE_ALIASES,
    STAGE_LABELS,
    STAGE_PROGRESS,
    resolve_stage,
    resolve_bucket,
    bucket_aliases,
    get_stage_label,
    get_stage_progress,
)

from .record import (
    PipelineRecord,
    StageUpdateRequest,
    StageUpdateResult,
    StageUpdatedEvent,
    parse_records,
)


def validate_stage(stage: str) -> bool:
    """Valide qu'une valeur d'étape est reconnue (canonique ou legacy)"""
    return resolve_stage(stage) is not None
