"""
SIGNATURE8 CRM - Historique des étapes

Durée passée dans chaque étape + formatage pour l'affichage.

Règles de formatage court:
  >= 1 jour   -> "Xj"
  >= 1 heure  -> "Xh"
  >= 1 minute -> "Xm"
  sinon       -> "Récent"
"""

from datetime import datetime
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict

from config import parse_iso, utc_now

DateLike = Union[str, datetime]


class StageHistoryEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    clientId: str = ""
    stageName: str
    startedAt: str
    endedAt: Optional[str] = None
    durationSeconds: Optional[int] = None
    changedBy: str = ""
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n > 1 else ''}"


def format_duration(seconds: int) -> str:
    if seconds >= 86400:
        return f"{seconds // 86400}j"
    if seconds >= 3600:
        return f"{seconds // 3600}h"
    if seconds >= 60:
        return f"{seconds // 60}m"
    return "Récent"


def format_duration_detailed(seconds: int) -> str:
    """
    Format détaillé (jours + heures, heures + minutes, etc.)
    Ex: "2 jours 3h", "1 heure 5m", "3 minutes 2s", "4 secondes"
    """
    if seconds >= 86400:
        days = seconds // 86400
        remaining_hours = (seconds % 86400) // 3600
        if remaining_hours > 0:
            return f"{_plural(days, 'jour')} {remaining_hours}h"
        return _plural(days, "jour")

    if seconds >= 3600:
        hours = seconds // 3600
        remaining_minutes = (seconds % 3600) // 60
        if remaining_minutes > 0:
            return f"{_plural(hours, 'heure')} {remaining_minutes}m"
        return _plural(hours, "heure")

    if seconds >= 60:
        minutes = seconds // 60
        remaining_seconds = seconds % 60
        if remaining_seconds > 0:
            return f"{_plural(minutes, 'minute')} {remaining_seconds}s"
        return _plural(minutes, "minute")

    if seconds > 0:
        return _plural(seconds, "seconde")

    return "Instant"


def calculate_duration(start: DateLike, end: Optional[DateLike] = None) -> int:
    """Durée entre deux dates en secondes entières (fin = maintenant par défaut)"""
    start_dt = parse_iso(start)
    end_dt = parse_iso(end) if end is not None else utc_now()
    if start_dt is None or end_dt is None:
        return 0
    return int((end_dt - start_dt).total_seconds())


def get_stage_display_duration(
    is_active: bool,
    started_at: DateLike,
    ended_at: Optional[DateLike] = None,
    duration_seconds: Optional[int] = None,
    now: Optional[datetime] = None,
) -> str:
    """
    Étape active: "En cours · 3h"
    Étape terminée: durée stockée, sinon calculée depuis les dates
    """
    if is_active:
        live = calculate_duration(started_at, now if now is not None else utc_now())
        return f"En cours · {format_duration(live)}"

    if duration_seconds is not None:
        return format_duration(duration_seconds)

    if ended_at:
        return format_duration(calculate_duration(started_at, ended_at))

    return "Récent"


def get_current_stage(history: List[StageHistoryEntry]) -> Optional[StageHistoryEntry]:
    """Étape active = première entrée sans endedAt"""
    for entry in history:
        if not entry.endedAt:
            return entry
    return None


def get_stage_duration(
    stage_name: str,
    history: List[StageHistoryEntry],
    current_stage: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Optional[str]:
    entry = next((e for e in history if e.stageName == stage_name), None)
    if entry is None:
        return None

    is_active = current_stage == stage_name and not entry.endedAt
    return get_stage_display_duration(
        is_active, entry.startedAt, entry.endedAt, entry.durationSeconds, now=now
    )
