"""
SIGNATURE8 CRM - Event Bus

Canal pub/sub in-process partagé par toutes les vues montées.
Livraison synchrone, dans l'ordre de réception, fire-and-forget:
un handler en erreur est journalisé et n'empêche pas les autres.
"""

import logging
from typing import Any, Callable, Dict, List

logger = logging.getLogger("event_bus")

STAGE_UPDATED = "stage-updated"

Handler = Callable[[Any], None]


class EventBus:
    """Publish/subscribe par nom d'événement."""

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_name: str, handler: Handler) -> Callable[[], None]:
        """
        Abonne `handler` à `event_name`.

        Returns:
            Fonction de désabonnement (idempotente)
        """
        self._subscribers.setdefault(event_name, []).append(handler)

        def unsubscribe():
            handlers = self._subscribers.get(event_name, [])
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                self._subscribers.pop(event_name, None)

        return unsubscribe

    def publish(self, event_name: str, payload: Any) -> int:
        """
        Diffuse `payload` à tous les abonnés de `event_name`.

        Returns:
            Nombre de handlers ayant reçu l'événement sans erreur
        """
        delivered = 0
        # copie: un handler peut se désabonner pendant la diffusion
        for handler in list(self._subscribers.get(event_name, [])):
            try:
                handler(payload)
                delivered += 1
            except Exception:
                logger.exception(f"[BUS] Handler failed for '{event_name}'")
        return delivered

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscribers.get(event_name, []))


# Bus partagé du process
bus = EventBus()
