"""
Client de l'API CRM (source de vérité distante)

Format API:
- Changement d'étape: POST /{collection}/{id}/stage
  Body: {"newStage": "...", "changedBy": "..."}
  Réponse: {"success": bool, "data": {...}, "error"?: str, "details"?: str}
- Liste: GET /{collection} -> {"data": [...]} ou [...]
- Historique: GET /{collection}/{id}/stage -> {"data": [...]}
- Auth: cookie "token"

update_stage et get_stage_history ne lèvent jamais: tout échec est normalisé
en StageUpdateResult(success=False) ou liste vide.
"""

import httpx
import logging
from typing import List, Optional
from pydantic import ValidationError

from config import CRM_API_URL, CRM_API_TOKEN, CRM_COLLECTION, CRM_HTTP_TIMEOUT
from models import PipelineRecord, StageUpdateRequest, StageUpdateResult, parse_records
from services.stage_history import StageHistoryEntry

logger = logging.getLogger("stage_client")


class StageApiClient:

    def __init__(
        self,
        base_url: str = CRM_API_URL,
        token: str = CRM_API_TOKEN,
        collection: str = CRM_COLLECTION,
        timeout: float = CRM_HTTP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.collection = collection.strip("/")
        self.timeout = timeout
        cookies = {"token": token} if token else None
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            cookies=cookies,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    async def aclose(self):
        await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    # ==================== STAGE UPDATE ====================

    async def update_stage(self, record_id: str, new_stage: str, changed_by: str) -> StageUpdateResult:
        """
        Demande le changement d'étape d'un record.

        Returns:
            StageUpdateResult; success=False pour réponse non-2xx,
            success:false, timeout ou erreur de connexion
        """
        url = f"/{self.collection}/{record_id}/stage"
        payload = StageUpdateRequest(newStage=new_stage, changedBy=changed_by)

        try:
            resp = await self._client.post(url, json=payload.model_dump())
        except httpx.TimeoutException as e:
            logger.warning(f"[STAGE_API] Timeout {url}: {e}")
            return StageUpdateResult(success=False, error=f"Network error: timeout après {self.timeout}s")
        except httpx.HTTPError as e:
            logger.warning(f"[STAGE_API] Connection error {url}: {e}")
            return StageUpdateResult(success=False, error=f"Network error: {e}")

        try:
            body = resp.json()
        except ValueError:
            body = {"error": resp.text} if resp.text else {}
        if not isinstance(body, dict):
            body = {}

        if not resp.is_success:
            error = body.get("error") or f"HTTP {resp.status_code}: {resp.reason_phrase}"
            logger.error(f"[STAGE_API] {record_id} -> {new_stage} rejected ({resp.status_code}): {error}")
            return StageUpdateResult(
                success=False,
                error=error,
                details=body.get("details"),
                status_code=resp.status_code,
            )

        body.setdefault("success", True)
        try:
            result = StageUpdateResult.model_validate({**body, "status_code": resp.status_code})
        except ValidationError as e:
            logger.warning(f"[STAGE_API] Malformed response for {record_id}, payload dropped: {e}")
            result = StageUpdateResult(success=body.get("success") is not False, status_code=resp.status_code)
        if not result.success:
            result.error = result.error or "La mise à jour a été refusée"
            logger.error(f"[STAGE_API] {record_id} -> {new_stage} refused: {result.error}")
        else:
            logger.info(f"[STAGE_API] {record_id} -> {new_stage} confirmed")
        return result

    # ==================== COLLECTION ====================

    async def fetch_records(self) -> List[PipelineRecord]:
        """
        Charge la collection complète (rôle du parent).
        Lève httpx.HTTPStatusError si l'API répond en erreur.
        """
        resp = await self._client.get(f"/{self.collection}")
        resp.raise_for_status()
        body = resp.json()
        items = body.get("data", []) if isinstance(body, dict) else body
        return parse_records(items or [])

    async def get_stage_history(self, record_id: str) -> List[StageHistoryEntry]:
        try:
            resp = await self._client.get(f"/{self.collection}/{record_id}/stage")
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[STAGE_API] History unavailable for {record_id}: {e}")
            return []
        items = (body.get("data") or []) if isinstance(body, dict) else []
        if not isinstance(items, list):
            logger.warning(f"[STAGE_API] Unexpected history payload for {record_id}")
            return []

        history = []
        for item in items:
            try:
                history.append(StageHistoryEntry.model_validate(item))
            except ValidationError as e:
                logger.warning(f"[STAGE_API] Skipping malformed history entry for {record_id}: {e}")
        return history
