"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  SIGNATURE8 CRM - Étapes du pipeline projet                                  ║
║                                                                              ║
║  RÈGLES:                                                                     ║
║  1. 11 étapes canoniques, ordre fixe (= colonnes du kanban)                  ║
║  2. Chaque valeur observée (canonique OU legacy) résout vers UNE étape       ║
║  3. Valeur inconnue = non reconnue (jamais affichée dans une colonne)        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Dict, FrozenSet, List, Optional


class PipelineStage(str, Enum):
    """
    Étapes canoniques - ordre du pipeline
    """
    QUALIFIE = "qualifie"
    PRISE_DE_BESOIN = "prise_de_besoin"
    ACOMPTE_RECU = "acompte_recu"
    CONCEPTION = "conception"
    DEVIS_NEGOCIATION = "devis_negociation"
    ACCEPTE = "accepte"
    REFUSE = "refuse"
    PREMIER_DEPOT = "premier_depot"
    PROJET_EN_COURS = "projet_en_cours"
    FACTURE_REGLEE = "facture_reglee"
    LIVRAISON_TERMINE = "livraison_termine"


STAGE_ORDER: List[PipelineStage] = list(PipelineStage)

# Pour validation
VALID_STAGES = [s.value for s in PipelineStage]


# ════════════════════════════════════════════════════════════════════════════
# ALIAS -> ÉTAPE CANONIQUE (table totale)
# ════════════════════════════════════════════════════════════════════════════

LEGACY_STAGE_ALIASES: Dict[str, PipelineStage] = {
    "chantier": PipelineStage.PROJET_EN_COURS,
    "perdu": PipelineStage.REFUSE,
    # Ancien pipeline
    "nouveau": PipelineStage.QUALIFIE,
    "acompte_verse": PipelineStage.ACOMPTE_RECU,
    "en_conception": PipelineStage.CONCEPTION,
    "en_validation": PipelineStage.DEVIS_NEGOCIATION,
    "en_chantier": PipelineStage.PROJET_EN_COURS,
    "livraison": PipelineStage.LIVRAISON_TERMINE,
    "termine": PipelineStage.LIVRAISON_TERMINE,
    "annule": PipelineStage.REFUSE,
    "suspendu": PipelineStage.REFUSE,
}

STAGE_ALIASES: Dict[str, PipelineStage] = {s.value: s for s in PipelineStage}
STAGE_ALIASES.update(LEGACY_STAGE_ALIASES)


STAGE_LABELS: Dict[str, str] = {
    "qualifie": "Qualifié",
    "prise_de_besoin": "Prise de besoin",
    "acompte_recu": "Acompte reçu",
    "conception": "Conception",
    "devis_negociation": "Devis/Négociation",
    "accepte": "Accepté",
    "refuse": "Refusé",
    "premier_depot": "1er Dépôt",
    "projet_en_cours": "Projet en cours",
    "facture_reglee": "Facture réglée",
    "livraison_termine": "Livraison & Terminé",
    "chantier": "Projet en cours",
    "perdu": "Perdu",
    # Legacy
    "nouveau": "Nouveau projet",
    "acompte_verse": "Acompte versé",
    "en_conception": "En conception",
    "en_validation": "En validation",
    "en_chantier": "En réalisation",
    "livraison": "Livraison",
    "termine": "Terminé",
    "annule": "Annulé",
    "suspendu": "Suspendu",
}

STAGE_PROGRESS: Dict[PipelineStage, int] = {
    PipelineStage.QUALIFIE: 10,
    PipelineStage.PRISE_DE_BESOIN: 20,
    PipelineStage.ACOMPTE_RECU: 30,
    PipelineStage.CONCEPTION: 45,
    PipelineStage.DEVIS_NEGOCIATION: 55,
    PipelineStage.ACCEPTE: 65,
    PipelineStage.REFUSE: 0,
    PipelineStage.PREMIER_DEPOT: 75,
    PipelineStage.PROJET_EN_COURS: 85,
    PipelineStage.FACTURE_REGLEE: 95,
    PipelineStage.LIVRAISON_TERMINE: 100,
}


def _check_exhaustive():
    """Chaque étape canonique doit avoir label + progression + alias"""
    for stage in PipelineStage:
        if stage.value not in STAGE_LABELS:
            raise RuntimeError(f"Stage {stage.value} has no label")
        if stage not in STAGE_PROGRESS:
            raise RuntimeError(f"Stage {stage.value} has no progress value")
        if STAGE_ALIASES.get(stage.value) is not stage:
            raise RuntimeError(f"Stage {stage.value} does not resolve to itself")
    for alias in STAGE_ALIASES:
        if alias not in STAGE_LABELS:
            raise RuntimeError(f"Alias {alias} has no label")


_check_exhaustive()


# ════════════════════════════════════════════════════════════════════════════
# RÉSOLUTION
# ════════════════════════════════════════════════════════════════════════════

def normalize_stage_value(value) -> str:
    if value is None:
        return ""
    if isinstance(value, PipelineStage):
        return value.value
    return str(value).strip().lower()


def resolve_stage(value) -> Optional[PipelineStage]:
    """
    Résout une valeur d'étape (canonique ou legacy) vers l'étape canonique.
    Retourne None si la valeur n'est pas reconnue.
    """
    return STAGE_ALIASES.get(normalize_stage_value(value))


def resolve_bucket(bucket_id) -> Optional[PipelineStage]:
    """Une colonne est identifiée par la valeur de son étape canonique"""
    try:
        return PipelineStage(normalize_stage_value(bucket_id))
    except ValueError:
        return None


_BUCKET_ALIASES: Dict[PipelineStage, FrozenSet[str]] = {
    stage: frozenset(alias for alias, target in STAGE_ALIASES.items() if target is stage)
    for stage in PipelineStage
}


def bucket_aliases(stage: PipelineStage) -> FrozenSet[str]:
    """Ensemble des valeurs qui tombent dans la colonne `stage`"""
    return _BUCKET_ALIASES[stage]


def get_stage_label(value) -> str:
    key = normalize_stage_value(value)
    return STAGE_LABELS.get(key, str(value) if value is not None else "")


def get_stage_progress(value) -> int:
    stage = resolve_stage(value)
    if stage is None:
        return 0
    return STAGE_PROGRESS[stage]
