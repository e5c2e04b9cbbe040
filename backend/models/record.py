"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SIGNATURE8 CRM - Modèle Record (projet / opportunité du pipeline)           ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  1. id stable pendant toute la vie du record                                 ║
║  2. stage = valeur brute reçue (canonique ou legacy)                         ║
║  3. project_label vide => jamais affiché dans le pipeline                    ║
║  4. Champs inconnus conservés tels quels (affichage uniquement)              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from config import parse_iso
from .stage import PipelineStage, resolve_stage


class PipelineRecord(BaseModel):
    """
    Un projet dans le pipeline. Accepte les clés camelCase de l'API CRM.
    """
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    stage: str = Field("", validation_alias=AliasChoices("stage", "statutProjet"))
    last_updated_at: Optional[datetime] = Field(
        None,
        validation_alias=AliasChoices("last_updated_at", "updatedAt", "derniereMaj"),
    )
    project_label: Optional[str] = Field(
        None, validation_alias=AliasChoices("project_label", "nomProjet")
    )

    # Affichage
    nom: str = ""
    telephone: str = ""
    ville: str = ""
    email: Optional[str] = ""
    type_projet: str = Field("", validation_alias=AliasChoices("type_projet", "typeProjet"))
    architecte_assigne: str = Field(
        "", validation_alias=AliasChoices("architecte_assigne", "architecteAssigne")
    )

    # Opportunités rattachées à un contact
    is_contact: bool = Field(False, validation_alias=AliasChoices("is_contact", "isContact"))
    opportunity_id: Optional[str] = Field(
        None, validation_alias=AliasChoices("opportunity_id", "opportunityId")
    )

    @field_validator("stage", mode="before")
    @classmethod
    def _stage_to_str(cls, v):
        if isinstance(v, PipelineStage):
            return v.value
        return "" if v is None else str(v)

    @field_validator("last_updated_at", mode="before")
    @classmethod
    def _parse_timestamp(cls, v):
        return parse_iso(v)

    def has_project_label(self) -> bool:
        return bool(self.project_label and self.project_label.strip())

    def canonical_stage(self) -> Optional[PipelineStage]:
        return resolve_stage(self.stage)

    def is_opportunity_backed(self) -> bool:
        """Opportunité d'un contact: se modifie depuis la fiche contact, pas le kanban"""
        return bool(self.is_contact and self.opportunity_id)


class StageUpdateRequest(BaseModel):
    """Body de POST /{collection}/{id}/stage"""
    newStage: str
    changedBy: str


class StageUpdateResult(BaseModel):
    """Réponse de l'endpoint stage (ou échec réseau normalisé)"""
    model_config = ConfigDict(extra="ignore")

    success: bool
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    details: Optional[str] = None
    devisSynced: bool = False
    devisUpdatedCount: int = 0
    status_code: Optional[int] = None


class StageUpdatedEvent(BaseModel):
    """Payload du broadcast "stage-updated" """
    recordId: str
    newStage: str
    changedBy: Optional[str] = None
    source: Optional[str] = None


def parse_records(items: List[Dict[str, Any]]) -> List[PipelineRecord]:
    return [item if isinstance(item, PipelineRecord) else PipelineRecord.model_validate(item)
            for item in items]
