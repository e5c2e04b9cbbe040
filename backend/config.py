"""
Configuration et utilitaires partagés
"""

import os
from datetime import datetime, timezone
from typing import Optional
from dotenv import load_dotenv
from pathlib import Path

# Charger .env
ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# API CRM (source de vérité distante)
CRM_API_URL = os.environ.get('CRM_API_URL', 'http://localhost:3000/api').rstrip('/')
CRM_API_TOKEN = os.environ.get('CRM_API_TOKEN', '')
CRM_COLLECTION = os.environ.get('CRM_COLLECTION', 'clients')
CRM_HTTP_TIMEOUT = float(os.environ.get('CRM_HTTP_TIMEOUT', '30'))

# Pipeline: fenêtres de protection (secondes)
STAGE_GUARD_WINDOW_SECONDS = float(os.environ.get('STAGE_GUARD_WINDOW_SECONDS', '2.0'))
STAGE_RECENCY_SECONDS = float(os.environ.get('STAGE_RECENCY_SECONDS', '2.0'))

CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '*').split(',')


# ==================== HELPERS ====================

def utc_now() -> datetime:
    """Retourne la date/heure actuelle (UTC, aware)"""
    return datetime.now(timezone.utc)

def now_iso() -> str:
    """Retourne la date/heure actuelle en ISO"""
    return utc_now().isoformat()

def parse_iso(value) -> Optional[datetime]:
    """
    Parse une date ISO (str ou datetime) en datetime UTC aware.
    Retourne None si vide ou illisible.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
