import json
import asyncio
from typing import Optional, Dict, Any, Tuple

import requests

from ticketdesk import settings
from ticketdesk.providers.base import MessagingProvider, SendResult
from ticketdesk.storage.models import MessageType
from ticketdesk.util.logger import get_logger

log = get_logger("evolution")

# media kinds the sendText endpoint accepts as mediaMessage
_MEDIA_KINDS = {
    MessageType.image.value,
    MessageType.document.value,
    MessageType.audio.value,
    MessageType.video.value,
}


def default_timeout() -> Tuple[float, float]:
    return (settings.DISPATCH_CONNECT_TIMEOUT, settings.DISPATCH_READ_TIMEOUT)  # connect, read


def build_payload(to: str, content: str, type: str = "text", media_url: Optional[str] = None) -> Dict[str, Any]:
    """
    Evolution send payload for one message:
      text                  -> {"number", "text"}
      image/audio/video     -> {"number", "mediaMessage": {mediatype, media, caption}}
      document              -> {"number", "mediaMessage": {mediatype, media, fileName}}
    Media without a media reference, location and contact go out as plain text.
    """
    kind = getattr(type, "value", type) or MessageType.text.value
    payload: Dict[str, Any] = {"number": to}
    if kind in _MEDIA_KINDS and media_url:
        media: Dict[str, Any] = {"mediatype": kind, "media": media_url}
        if kind == MessageType.document.value:
            media["fileName"] = content
        else:
            media["caption"] = content
        payload["mediaMessage"] = media
    else:
        payload["text"] = content
    return payload


def message_key_id(data: Any) -> Optional[str]:
    """The sent message's key id from a sendText response: {"key": {"id": "..."}, ...}."""
    if not isinstance(data, dict):
        return None
    key = data.get("key")
    if isinstance(key, dict) and key.get("id"):
        return str(key["id"])
    return None


class EvolutionProvider(MessagingProvider):
    """
    One configured Evolution API instance:
      - send(): async wrapper over requests via thread offload; ok only on 200/201,
        carrying the message key id from the response
      - connection_state(): GET instance/connectionState
    Never raises on transport problems; failures are logged and reported as a falsy result or None.
    """

    def __init__(self, api_url: str, token: str, instance_key: str,
                 timeout: Optional[Tuple[float, float]] = None,
                 retries: Optional[int] = None, dry_run: bool = False):
        super().__init__(dry_run=dry_run)
        self.api_url = (api_url or "").rstrip("/")
        self.token = token or ""
        self.instance_key = instance_key
        self.timeout = timeout or default_timeout()
        self.retries = settings.DISPATCH_RETRIES if retries is None else max(0, retries)

    @classmethod
    def from_instance(cls, instance, dry_run: bool = False) -> "EvolutionProvider":
        return cls(instance.api_url, instance.token, instance.instance_key, dry_run=dry_run)

    def is_enabled(self) -> bool:
        return bool(self.api_url and self.token and self.instance_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "apikey": self.token,
        }

    # ---------- outbound ----------
    async def send(self, to: str, content: str, type: str = "text", media_url: str | None = None) -> SendResult:
        if self.dry_run:
            return await super().send(to, content, type, media_url)
        if not self.is_enabled():
            log.error("evolution_send_disabled", {"instance": self.instance_key})
            return SendResult(ok=False, raw={"reason": "disabled"})

        url = f"{self.api_url}/message/sendText/{self.instance_key}"
        payload = build_payload(to, content, type, media_url)

        def _post():
            return requests.post(url, headers=self._headers(), data=json.dumps(payload), timeout=self.timeout)

        for attempt in range(self.retries + 1):
            try:
                resp = await asyncio.to_thread(_post)
            except requests.Timeout:
                log.warning("evolution_send_timeout", {"instance": self.instance_key, "to": to, "attempt": attempt + 1})
                continue
            except requests.RequestException as e:
                log.warning("evolution_send_error", {"instance": self.instance_key, "to": to,
                                                     "attempt": attempt + 1, "error": str(e)})
                continue

            try:
                data = resp.json()
            except ValueError:
                data = {"_raw": resp.text}
            if resp.status_code in (200, 201):
                return SendResult(ok=True, provider_id=message_key_id(data), raw=data)
            log.error("evolution_send_failed", {"instance": self.instance_key, "status": resp.status_code, "data": data})
            if resp.status_code < 500:
                # provider rejected the payload; retrying the same request will not help
                return SendResult(ok=False, raw=data)
        return SendResult(ok=False)

    # ---------- instance ----------
    async def connection_state(self) -> Optional[Dict[str, Any]]:
        if self.dry_run:
            return await super().connection_state()
        url = f"{self.api_url}/instance/connectionState/{self.instance_key}"

        def _get():
            return requests.get(url, headers={"apikey": self.token}, timeout=self.timeout)

        try:
            resp = await asyncio.to_thread(_get)
            if resp.status_code != 200:
                log.error("evolution_state_failed", {"instance": self.instance_key, "status": resp.status_code})
                return None
            return resp.json()
        except (requests.RequestException, ValueError) as e:
            log.warning("evolution_state_error", {"instance": self.instance_key, "error": str(e)})
            return None
