"""
SIGNATURE8 CRM - État du glisser-déposer (kanban)

Cycle d'un geste:
  begin(id)      -> active + pending (verrou de transition), origine mémorisée
  hover(bucket)  -> placeholder dans la colonne survolée (dédoublonné)
  release()      -> fin du geste (drop): plus d'active, plus de placeholder,
                    le verrou pending reste jusqu'à la réponse API
  clear()        -> plus rien (annulation, no-op, fin de commit)

`generation` s'incrémente à chaque begin/clear: un commit en vol compare
sa génération pour savoir s'il a été remplacé (événement externe).
"""

from typing import Optional
from models import PipelineRecord, PipelineStage, resolve_bucket


class DragState:

    def __init__(self):
        self.active_id: Optional[str] = None
        self.pending_id: Optional[str] = None
        self.pending_origin_stage: Optional[PipelineStage] = None
        self.placeholder: Optional[PipelineRecord] = None
        self.placeholder_bucket: Optional[str] = None
        self.last_hovered_bucket: Optional[str] = None
        self.generation = 0

    def begin(self, record: PipelineRecord) -> int:
        self.generation += 1
        self.active_id = record.id
        self.pending_id = record.id
        self.pending_origin_stage = record.canonical_stage()
        self.placeholder = None
        self.placeholder_bucket = None
        self.last_hovered_bucket = None
        return self.generation

    def is_dragging(self, record_id: Optional[str] = None) -> bool:
        if self.active_id is None:
            return False
        return record_id is None or self.active_id == record_id

    def is_pending(self, record_id: Optional[str] = None) -> bool:
        if self.pending_id is None:
            return False
        return record_id is None or self.pending_id == record_id

    def hover(self, bucket_id: str, dragged: PipelineRecord) -> bool:
        """
        Met à jour le placeholder pour la colonne survolée.

        Returns:
            True si l'état a changé, False sinon (même colonne, hors geste)
        """
        if self.active_id is None or dragged.id != self.active_id:
            return False
        if bucket_id == self.last_hovered_bucket:
            return False
        self.last_hovered_bucket = bucket_id

        target = resolve_bucket(bucket_id)
        if target is None or target == dragged.canonical_stage():
            changed = self.placeholder is not None
            self.placeholder = None
            self.placeholder_bucket = None
            return changed

        self.placeholder = dragged.model_copy(update={"stage": target.value})
        self.placeholder_bucket = bucket_id
        return True

    def release(self):
        self.active_id = None
        self.placeholder = None
        self.placeholder_bucket = None
        self.last_hovered_bucket = None

    def clear(self):
        self.release()
        self.pending_id = None
        self.pending_origin_stage = None
        self.generation += 1

    def origin_bucket_excludes(self, record_id: str, bucket: Optional[PipelineStage]) -> bool:
        """Le record en transition n'apparaît jamais dans sa colonne d'origine"""
        return (
            self.pending_id == record_id
            and bucket is not None
            and self.pending_origin_stage == bucket
        )
