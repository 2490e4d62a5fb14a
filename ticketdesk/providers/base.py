from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ticketdesk.storage.models import MessageType, MessageStatus
from ticketdesk.util.logger import get_logger

log = get_logger("providers")

JID_SUFFIXES = ("@s.whatsapp.net", "@c.us")

# message.status codes: numeric from the webhook contract, string acks from newer servers
STATUS_CODES: Dict[Any, MessageStatus] = {
    1: MessageStatus.sent,
    2: MessageStatus.delivered,
    3: MessageStatus.read,
    "SERVER_ACK": MessageStatus.sent,
    "DELIVERY_ACK": MessageStatus.delivered,
    "READ": MessageStatus.read,
    "PLAYED": MessageStatus.read,
    "ERROR": MessageStatus.failed,
}


@dataclass(frozen=True)
class MessageBody:
    """One inbound message body, tagged by kind. Only the fields of that kind are set."""
    kind: MessageType
    text: Optional[str] = None          # conversation text or media caption
    media_url: Optional[str] = None
    mimetype: Optional[str] = None
    file_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    place: Optional[str] = None
    contact_name: Optional[str] = None
    vcard: Optional[str] = None

    @property
    def plain_text(self) -> Optional[str]:
        """Text typed by the customer, None for pure media."""
        if self.kind == MessageType.text and self.text:
            return self.text
        return None

    def content(self) -> str:
        kind = self.kind
        if kind == MessageType.text:
            return self.text or "Media message"
        if kind == MessageType.image:
            return self.text or "Image"
        if kind == MessageType.document:
            return self.file_name or self.text or "Document"
        if kind == MessageType.audio:
            return "Audio message"
        if kind == MessageType.video:
            return self.text or "Video"
        if kind == MessageType.location:
            if self.place:
                return self.place
            return f"Location: {self.latitude}, {self.longitude}"
        if kind == MessageType.contact:
            return self.contact_name or "Contact"
        raise ValueError(f"unhandled message kind {kind!r}")

    def media_metadata(self) -> Optional[Dict[str, Any]]:
        meta = {
            "mimetype": self.mimetype,
            "fileName": self.file_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "vcard": self.vcard,
        }
        meta = {k: v for k, v in meta.items() if v is not None}
        return meta or None


@dataclass(frozen=True)
class InboundEvent:
    provider_message_id: str
    address: str                         # channel address, jid suffix stripped
    display_name: Optional[str]
    body: MessageBody
    from_me: bool = False
    instance_key: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


@dataclass(frozen=True)
class StatusEvent:
    provider_message_id: str
    status: Optional[MessageStatus]      # None when the code is unknown
    code: Any = None


@dataclass(frozen=True)
class SendResult:
    """Outcome of one send. Truthy on success; provider_id is the provider's message key when known."""
    ok: bool
    provider_id: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __bool__(self) -> bool:
        return self.ok


def address_from_jid(jid: str) -> str:
    for suffix in JID_SUFFIXES:
        if jid.endswith(suffix):
            return jid[: -len(suffix)]
    return jid


def parse_body(message: Dict[str, Any]) -> MessageBody:
    message = message or {}
    if message.get("conversation"):
        return MessageBody(MessageType.text, text=message["conversation"])
    if "extendedTextMessage" in message:
        return MessageBody(MessageType.text, text=(message["extendedTextMessage"] or {}).get("text"))
    if "imageMessage" in message:
        m = message["imageMessage"] or {}
        return MessageBody(MessageType.image, text=m.get("caption"), media_url=m.get("url"),
                           mimetype=m.get("mimetype"))
    if "documentMessage" in message or "documentWithCaptionMessage" in message:
        m = message.get("documentMessage")
        if m is None:
            m = ((message["documentWithCaptionMessage"] or {}).get("message") or {}).get("documentMessage") or {}
        return MessageBody(MessageType.document, text=m.get("caption"), media_url=m.get("url"),
                           mimetype=m.get("mimetype"), file_name=m.get("title") or m.get("fileName"))
    if "audioMessage" in message:
        m = message["audioMessage"] or {}
        return MessageBody(MessageType.audio, media_url=m.get("url"), mimetype=m.get("mimetype"))
    if "videoMessage" in message:
        m = message["videoMessage"] or {}
        return MessageBody(MessageType.video, text=m.get("caption"), media_url=m.get("url"),
                           mimetype=m.get("mimetype"))
    if "locationMessage" in message:
        m = message["locationMessage"] or {}
        return MessageBody(MessageType.location, latitude=m.get("degreesLatitude"),
                           longitude=m.get("degreesLongitude"), place=m.get("name") or m.get("address"))
    if "contactMessage" in message:
        m = message["contactMessage"] or {}
        return MessageBody(MessageType.contact, contact_name=m.get("displayName"), vcard=m.get("vcard"))
    # unknown shape: keep it as an untyped text so the conversation is not lost
    return MessageBody(MessageType.text)


def parse_upsert(data: Dict[str, Any], instance_key: Optional[str] = None) -> Optional[InboundEvent]:
    """
    Normalize a message.upsert `data` object:
      {"key": {"remoteJid": "5511...@s.whatsapp.net", "id": "...", "fromMe": false},
       "pushName": "Maria", "message": {"conversation": "oi"}}
    Returns None when the payload has no usable sender or id, or comes from a group/broadcast.
    """
    key = data.get("key") or {}
    jid = str(key.get("remoteJid") or "")
    msg_id = str(key.get("id") or "")
    if not jid or not msg_id:
        return None
    if jid.endswith("@g.us") or jid.endswith("@broadcast"):
        return None

    message = data.get("message") or {}
    push_name = data.get("pushName") or message.get("pushName")
    return InboundEvent(
        provider_message_id=msg_id,
        address=address_from_jid(jid),
        display_name=push_name or None,
        body=parse_body(message),
        from_me=bool(key.get("fromMe")),
        instance_key=instance_key,
        raw=data,
    )


def parse_status(data: Dict[str, Any]) -> Optional[StatusEvent]:
    """
    Normalize a message.status `data` object: {"key": {"id": "..."}, "status": 2}.
    Also tolerates {"keyId": "...", "update": {"status": "READ"}}.
    """
    key = data.get("key") or {}
    msg_id = key.get("id") or data.get("keyId")
    if not msg_id:
        return None
    code = data.get("status")
    if code is None:
        code = (data.get("update") or {}).get("status")
    if isinstance(code, str) and code.isdigit():
        code = int(code)
    if not isinstance(code, (int, str)):
        code = None
    return StatusEvent(provider_message_id=str(msg_id), status=STATUS_CODES.get(code), code=code)


class MessagingProvider:
    """Dry-run provider: never leaves the process, always reports success."""

    def __init__(self, dry_run: bool = True):
        self.dry_run = dry_run

    async def send(self, to: str, content: str, type: str = "text", media_url: str | None = None) -> SendResult:
        log.info("[DRY_RUN SEND]", {"to": to, "type": getattr(type, "value", type), "content": content, "media_url": media_url})
        return SendResult(ok=True)

    async def connection_state(self) -> Optional[Dict[str, Any]]:
        return {"state": "dry_run"}
