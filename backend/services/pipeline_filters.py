"""
Filtres du kanban: recherche texte + filtres par champ ("all" = pas de filtre)
"""

from typing import Optional
from pydantic import BaseModel

from models import PipelineRecord

ALL = "all"


class BoardFilters(BaseModel):
    architecte: str = ALL
    statut: str = ALL
    ville: str = ALL
    type_projet: str = ALL


def passes_search(record: PipelineRecord, query: Optional[str]) -> bool:
    normalized = (query or "").strip().lower()
    if not normalized:
        return True
    haystack = " ".join([
        record.nom or "",
        record.telephone or "",
        record.ville or "",
        record.type_projet or "",
        record.architecte_assigne or "",
        record.email or "",
    ]).lower()
    return normalized in haystack


def passes_filters(record: PipelineRecord, filters: Optional[BoardFilters]) -> bool:
    if filters is None:
        return True
    if filters.statut != ALL and record.stage != filters.statut:
        return False
    if filters.ville != ALL and record.ville != filters.ville:
        return False
    if filters.type_projet != ALL and record.type_projet != filters.type_projet:
        return False
    if filters.architecte != ALL and record.architecte_assigne != filters.architecte:
        return False
    return True
