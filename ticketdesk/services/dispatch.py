# ticketdesk/services/dispatch.py
from typing import Optional, Dict, Any

from sqlalchemy.orm import Session

from ticketdesk import settings
from ticketdesk.providers.base import MessagingProvider, SendResult
from ticketdesk.providers.evolution import EvolutionProvider
from ticketdesk.services import storage
from ticketdesk.storage.models import ProviderInstance
from ticketdesk.util.logger import get_logger

log = get_logger("dispatch")


def select_instance(db: Session, instance_key: Optional[str] = None) -> Optional[ProviderInstance]:
    """The active instance with this key, else the first active one."""
    if instance_key:
        inst = storage.get_instance_by_key(db, instance_key)
        if inst and inst.is_active:
            return inst
        log.warning("instance_not_active", {"instance": instance_key})
    active = storage.list_instances(db, active_only=True)
    return active[0] if active else None


class Dispatcher:
    """
    Sends outbound messages through a configured provider instance.
    dispatch() never raises; its SendResult is truthy on success and carries the
    provider's message id when the provider returned one.
    """

    def __init__(self, dry_run: Optional[bool] = None):
        self.dry_run = settings.DRY_RUN if dry_run is None else dry_run

    def provider_for(self, instance: ProviderInstance) -> MessagingProvider:
        return EvolutionProvider.from_instance(instance, dry_run=self.dry_run)

    async def dispatch(self, db: Session, contact_address: str, content: str, type="text",
                       media_url: Optional[str] = None, instance_key: Optional[str] = None) -> SendResult:
        try:
            instance = select_instance(db, instance_key)
        except Exception:
            log.exception("dispatch_instance_lookup_failed", {"instance": instance_key})
            return SendResult(ok=False)
        if instance is None:
            log.error("dispatch_no_instance", {"to": contact_address})
            return SendResult(ok=False)

        provider = self.provider_for(instance)
        try:
            result = await provider.send(contact_address, content, type, media_url)
        except Exception:
            log.exception("dispatch_failed", {"instance": instance.instance_key, "to": contact_address})
            return SendResult(ok=False)
        log.info("dispatch_done", {"instance": instance.instance_key, "to": contact_address,
                                   "ok": bool(result), "provider_id": result.provider_id})
        return result

    async def connection_state(self, db: Session, instance_key: str) -> Optional[Dict[str, Any]]:
        instance = storage.get_instance_by_key(db, instance_key)
        if instance is None:
            return None
        return await self.provider_for(instance).connection_state()
