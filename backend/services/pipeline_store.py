"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SIGNATURE8 CRM - Pipeline Store (réconciliation optimiste du kanban)        ║
║                                                                              ║
║  Copie locale de la collection, alimentée par 3 canaux:                      ║
║  - refresh du parent       -> sync_from_parent                               ║
║  - glisser-déposer         -> begin_drag / on_drag_hover / commit_drop       ║
║  - broadcast "stage-updated" -> on_external_stage_event                      ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - un record n'apparaît jamais dans deux colonnes (même pendant un drag)     ║
║  - project_label vide => aucune colonne                                      ║
║  - refresh ignoré tant qu'une transition est en cours (pending)              ║
║  - un record modifié par un événement externe est protégé ~2s                ║
║  - échec API => rollback complet depuis le snapshot pris avant mutation      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from config import STAGE_GUARD_WINDOW_SECONDS, STAGE_RECENCY_SECONDS, utc_now
from models import (
    PipelineRecord,
    PipelineStage,
    STAGE_ORDER,
    StageUpdateResult,
    StageUpdatedEvent,
    bucket_aliases,
    get_stage_label,
    parse_records,
    resolve_bucket,
    resolve_stage,
)
from models.stage import normalize_stage_value
from services.drag_state import DragState
from services.event_bus import EventBus, STAGE_UPDATED
from services.notifier import Notifier, LONG_DURATION_MS
from services.pipeline_filters import BoardFilters, passes_filters, passes_search

logger = logging.getLogger("pipeline_store")

GENERIC_MOVE_ERROR = "Impossible de déplacer le projet. Veuillez réessayer."


class CommitOutcome(str, Enum):
    CONFIRMED = "confirmed"      # API OK, nouvelle étape conservée
    ROLLED_BACK = "rolled_back"  # API KO, snapshot restauré
    NOOP = "noop"                # déposé sur sa colonne d'origine
    INVALID = "invalid"          # colonne/record introuvable, aucune mutation
    REJECTED = "rejected"        # record non déplaçable depuis le kanban
    SUPERSEDED = "superseded"    # événement externe arrivé pendant la requête


class PipelineStore:
    """
    Store de réconciliation du pipeline.

    Args:
        api: collaborateur exposant `async update_stage(id, stage, changed_by)`
        notifier: toasts utilisateur
        on_change: callback parent, appelé avec chaque valeur optimiste,
                   confirmée, restaurée ou reçue par broadcast
        clock: horloge (UTC aware)
        guard_window: durée de protection après un événement externe (s)
        recency_threshold: fenêtre "écriture récente gagne" (s)
        name: identifiant de ce store sur le bus (évite l'écho)
    """

    def __init__(
        self,
        api,
        notifier: Optional[Notifier] = None,
        on_change: Optional[Callable[[PipelineRecord], Any]] = None,
        clock: Callable[[], datetime] = utc_now,
        guard_window: float = STAGE_GUARD_WINDOW_SECONDS,
        recency_threshold: float = STAGE_RECENCY_SECONDS,
        name: str = "kanban",
    ):
        self.api = api
        self.notifier = notifier or Notifier()
        self.on_change = on_change
        self.clock = clock
        self.guard_window = timedelta(seconds=guard_window)
        self.recency_threshold = recency_threshold
        self.name = name

        self.drag = DragState()
        self._local: List[PipelineRecord] = []
        self._guards: Dict[str, datetime] = {}
        self._bus: Optional[EventBus] = None
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ════════════════════════════════════════════════════════════════════════
    # LECTURE
    # ════════════════════════════════════════════════════════════════════════

    @property
    def records(self) -> List[PipelineRecord]:
        return list(self._local)

    def get_record(self, record_id: str) -> Optional[PipelineRecord]:
        return self._find(record_id)[1]

    @property
    def pending_id(self) -> Optional[str]:
        return self.drag.pending_id

    @property
    def pending_origin_stage(self) -> Optional[PipelineStage]:
        return self.drag.pending_origin_stage

    @property
    def placeholder(self) -> Optional[PipelineRecord]:
        return self.drag.placeholder

    @property
    def guarded_ids(self) -> Set[str]:
        self._prune_guards()
        return set(self._guards)

    def get_bucket(
        self,
        bucket_id: str,
        search: Optional[str] = None,
        filters: Optional[BoardFilters] = None,
    ) -> List[PipelineRecord]:
        """
        Contenu d'une colonne, dans l'ordre de la collection locale.
        Le placeholder du drag en cours est ajouté en fin de colonne.
        """
        bucket_stage = resolve_bucket(bucket_id)
        aliases = bucket_aliases(bucket_stage) if bucket_stage is not None else frozenset()

        items = []
        for record in self._local:
            if not record.has_project_label():
                continue
            if self.drag.is_dragging(record.id):
                continue
            if self.drag.origin_bucket_excludes(record.id, bucket_stage):
                continue
            if normalize_stage_value(record.stage) not in aliases and record.stage != bucket_id:
                continue
            if not passes_search(record, search) or not passes_filters(record, filters):
                continue
            items.append(record)

        placeholder = self.drag.placeholder
        if (
            placeholder is not None
            and self.drag.placeholder_bucket == bucket_id
            and placeholder.has_project_label()
            and not any(r.id == placeholder.id for r in items)
        ):
            items.append(placeholder)
        return items

    def get_board(
        self,
        search: Optional[str] = None,
        filters: Optional[BoardFilters] = None,
    ) -> Dict[str, List[PipelineRecord]]:
        return {stage.value: self.get_bucket(stage.value, search, filters) for stage in STAGE_ORDER}

    # ════════════════════════════════════════════════════════════════════════
    # CANAL 1: REFRESH DU PARENT
    # ════════════════════════════════════════════════════════════════════════

    def sync_from_parent(self, parent_records: Iterable[Any]) -> bool:
        """
        Fusionne la collection du parent dans la copie locale.

        Returns:
            False si ignoré (transition en cours), True sinon
        """
        if self.drag.pending_id is not None:
            logger.debug(f"[PIPELINE] Refresh ignored: transition pending for {self.drag.pending_id}")
            return False

        self._prune_guards()
        incoming = self._dedupe(parse_records(list(parent_records)))
        now = self.clock()
        local_by_id = {r.id: r for r in self._local}

        merged: List[PipelineRecord] = []
        for parent in incoming:
            existing = local_by_id.get(parent.id)
            if existing is None:
                merged.append(parent)
            elif self._is_guarded(parent.id):
                merged.append(existing)
            elif self._local_is_fresher(existing, parent, now):
                merged.append(existing)
            else:
                merged.append(parent)

        parent_ids = {r.id for r in incoming}
        for existing in self._local:
            if existing.id not in parent_ids and existing.has_project_label():
                merged.append(existing)

        self._local = merged
        logger.debug(f"[PIPELINE] Synced {len(incoming)} parent records -> {len(merged)} local")
        return True

    def _local_is_fresher(self, local: PipelineRecord, parent: PipelineRecord, now: datetime) -> bool:
        if local.stage == parent.stage or local.last_updated_at is None:
            return False
        if parent.last_updated_at is not None:
            ahead = (local.last_updated_at - parent.last_updated_at).total_seconds()
            if 0 < ahead < self.recency_threshold:
                return True
        age = (now - local.last_updated_at).total_seconds()
        return 0 <= age < self.recency_threshold

    @staticmethod
    def _dedupe(records: List[PipelineRecord]) -> List[PipelineRecord]:
        seen = set()
        unique = []
        for record in records:
            if record.id in seen:
                continue
            seen.add(record.id)
            unique.append(record)
        if len(unique) != len(records):
            logger.warning(f"[PIPELINE] Removed {len(records) - len(unique)} duplicate records from refresh")
        return unique

    # ════════════════════════════════════════════════════════════════════════
    # CANAL 2: ÉVÉNEMENTS EXTERNES (bus "stage-updated")
    # ════════════════════════════════════════════════════════════════════════

    def attach(self, bus: EventBus):
        self.detach()
        self._bus = bus
        self._unsubscribe = bus.subscribe(STAGE_UPDATED, self._handle_stage_event)

    def detach(self):
        if self._unsubscribe is not None:
            self._unsubscribe()
        self._unsubscribe = None
        self._bus = None

    def _handle_stage_event(self, payload):
        event = payload if isinstance(payload, StageUpdatedEvent) else StageUpdatedEvent.model_validate(payload)
        if event.source == self.name:
            return
        self.on_external_stage_event(event.recordId, event.newStage)

    def on_external_stage_event(self, record_id: str, new_stage: str) -> bool:
        """
        Applique immédiatement un changement d'étape fait par une autre vue.
        Idempotent: même (id, étape) ré-appliqué = réarmement de la protection seulement.

        Returns:
            True si le record local a changé
        """
        now = self.clock()
        self._guards[record_id] = now + self.guard_window

        if self.drag.is_pending(record_id):
            logger.info(f"[PIPELINE] External change supersedes pending transition of {record_id}")
            self.drag.clear()

        if resolve_stage(new_stage) is None:
            logger.warning(f"[PIPELINE] Unrecognized stage '{new_stage}' received for {record_id}")

        idx, record = self._find(record_id)
        if record is None:
            logger.debug(f"[PIPELINE] External event for {record_id} not on board")
            return False
        if record.stage == new_stage:
            return False

        updated = record.model_copy(update={"stage": new_stage, "last_updated_at": now})
        self._local[idx] = updated
        logger.info(f"[PIPELINE] ⚡ {record_id}: {record.stage} -> {new_stage} (external)")
        self._notify_parent(updated)
        return True

    def _is_guarded(self, record_id: str) -> bool:
        expires = self._guards.get(record_id)
        if expires is None:
            return False
        if self.clock() >= expires:
            del self._guards[record_id]
            return False
        return True

    def _prune_guards(self):
        now = self.clock()
        for record_id, expires in list(self._guards.items()):
            if now >= expires:
                del self._guards[record_id]

    # ════════════════════════════════════════════════════════════════════════
    # CANAL 3: GLISSER-DÉPOSER
    # ════════════════════════════════════════════════════════════════════════

    def begin_drag(self, record_id: str) -> bool:
        if self.drag.is_pending() and not self.drag.is_dragging():
            logger.info(f"[PIPELINE] Drag of {record_id} refused: {self.drag.pending_id} is being saved")
            return False
        record = self.get_record(record_id)
        if record is None or not record.has_project_label():
            logger.warning(f"[PIPELINE] Drag of unknown record {record_id}")
            return False
        self.drag.begin(record)
        return True

    def on_drag_hover(self, bucket_id: str) -> bool:
        """Returns True si le placeholder a changé"""
        if not self.drag.is_dragging():
            return False
        dragged = self.get_record(self.drag.active_id)
        if dragged is None:
            return False
        return self.drag.hover(bucket_id, dragged)

    def cancel_drag(self) -> bool:
        """Annulation du geste: aucune mutation, aucun appel réseau"""
        if not self.drag.is_dragging():
            return False
        logger.debug(f"[PIPELINE] Drag of {self.drag.active_id} cancelled")
        self.drag.clear()
        return True

    async def commit_drop(
        self,
        record_id: str,
        target_bucket_id: str,
        changed_by: str = "Utilisateur",
    ) -> CommitOutcome:
        """
        Dépose un record dans une colonne: mise à jour optimiste, appel API,
        puis confirmation ou rollback. Ne lève jamais.
        """
        if self.drag.is_pending(record_id) and not self.drag.is_dragging(record_id):
            logger.warning(f"[PIPELINE] Drop of {record_id} refused: a commit is already in flight")
            return CommitOutcome.INVALID
        if not self.drag.is_pending(record_id):
            if self.drag.is_pending():
                logger.warning(f"[PIPELINE] Drop of {record_id} refused: {self.drag.pending_id} pending")
                return CommitOutcome.INVALID
            if not self.begin_drag(record_id):
                self.notifier.error("Déplacement impossible", "Projet introuvable")
                return CommitOutcome.INVALID
        self.drag.release()

        idx, record = self._find(record_id)
        if record is None:
            self.drag.clear()
            self.notifier.error("Déplacement impossible", "Projet introuvable")
            return CommitOutcome.INVALID

        target = resolve_bucket(target_bucket_id)
        if target is None:
            self.drag.clear()
            logger.warning(f"[PIPELINE] Unknown target bucket '{target_bucket_id}'")
            self.notifier.error("Déplacement impossible", f"Colonne inconnue: {target_bucket_id}")
            return CommitOutcome.INVALID

        if record.canonical_stage() == target:
            self.drag.clear()
            logger.debug(f"[PIPELINE] {record_id} dropped on its own column")
            return CommitOutcome.NOOP

        if record.is_opportunity_backed():
            self.drag.clear()
            self.notifier.error(
                "Déplacement impossible",
                "Veuillez mettre à jour cette opportunité depuis la page contact",
            )
            return CommitOutcome.REJECTED

        # 1. Snapshot + mutation optimiste
        generation = self.drag.generation
        snapshot = record.model_copy(deep=True)
        optimistic = record.model_copy(update={"stage": target.value, "last_updated_at": self.clock()})
        self._local[idx] = optimistic
        logger.info(f"[PIPELINE] 🎯 {record_id}: {record.stage} -> {target.value} (optimistic)")
        self._notify_parent(optimistic)

        # 2. Appel API
        try:
            result = await self.api.update_stage(record_id, target.value, changed_by)
        except Exception as e:
            logger.exception(f"[PIPELINE] Stage update of {record_id} raised")
            result = StageUpdateResult(success=False, error=str(e) or None)

        if self.drag.generation != generation or not self.drag.is_pending(record_id):
            logger.info(f"[PIPELINE] Transition of {record_id} superseded, response ignored")
            return CommitOutcome.SUPERSEDED

        # 3a. Confirmation
        if result.success:
            confirmed = self._reconcile_confirmed(optimistic, result, target)
            self._replace(confirmed)
            self.drag.clear()
            self._notify_parent(confirmed)
            self._broadcast(confirmed, changed_by)
            self._toast_success(snapshot, confirmed, result)
            return CommitOutcome.CONFIRMED

        # 3b. Rollback
        logger.warning(f"[PIPELINE] 🔄 Rolling back {record_id} to {snapshot.stage}: {result.error}")
        self._replace(snapshot)
        self.drag.clear()
        self._notify_parent(snapshot)
        description = result.error or GENERIC_MOVE_ERROR
        if result.details:
            description = f"{description} ({result.details})"
        self.notifier.error("Impossible de déplacer le projet", description)
        return CommitOutcome.ROLLED_BACK

    def _reconcile_confirmed(
        self,
        optimistic: PipelineRecord,
        result: StageUpdateResult,
        target: PipelineStage,
    ) -> PipelineRecord:
        if not result.data:
            return optimistic

        server = PipelineRecord.model_validate({**result.data, "id": optimistic.id})
        explicit = server.model_fields_set | set(server.model_extra or {})
        server_fields = {k: v for k, v in server.model_dump().items() if k in explicit}
        merged = PipelineRecord.model_validate({**optimistic.model_dump(), **server_fields})

        if "stage" in server_fields and resolve_stage(merged.stage) != target:
            logger.warning(
                f"[PIPELINE] ⚠️ Inconsistency for {optimistic.id}: requested {target.value}, "
                f"server returned {merged.stage}. Keeping {target.value}"
            )
            merged = merged.model_copy(update={"stage": target.value})
        if merged.last_updated_at is None:
            merged = merged.model_copy(update={"last_updated_at": optimistic.last_updated_at})
        return merged

    # ════════════════════════════════════════════════════════════════════════
    # HELPERS
    # ════════════════════════════════════════════════════════════════════════

    def _find(self, record_id: Optional[str]) -> Tuple[Optional[int], Optional[PipelineRecord]]:
        for idx, record in enumerate(self._local):
            if record.id == record_id:
                return idx, record
        return None, None

    def _replace(self, record: PipelineRecord):
        idx, _ = self._find(record.id)
        if idx is None:
            self._local.append(record)
        else:
            self._local[idx] = record

    def _notify_parent(self, record: PipelineRecord):
        if self.on_change is None:
            return
        try:
            self.on_change(record)
        except Exception:
            logger.exception(f"[PIPELINE] Parent callback failed for {record.id}")

    def _broadcast(self, record: PipelineRecord, changed_by: str):
        if self._bus is None:
            return
        self._bus.publish(
            STAGE_UPDATED,
            StageUpdatedEvent(
                recordId=record.id, newStage=record.stage, changedBy=changed_by, source=self.name
            ),
        )

    def _toast_success(self, before: PipelineRecord, after: PipelineRecord, result: StageUpdateResult):
        description = f"{after.nom}: {get_stage_label(before.stage)} → {get_stage_label(after.stage)}"
        duration = 3000
        if result.devisSynced and result.devisUpdatedCount > 0:
            verb = "accepté(s)" if after.canonical_stage() == PipelineStage.ACCEPTE else "refusé(s)"
            description += f"\n📋 {result.devisUpdatedCount} devis {verb} automatiquement"
            duration = LONG_DURATION_MS
        self.notifier.success("✅ Projet déplacé", description, duration_ms=duration)
