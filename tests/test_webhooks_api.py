from conftest import upsert_payload, make_token
from ticketdesk.storage.models import Ticket, Message, Customer, Contact, MessageStatus, MessageDirection

URL = "/api/webhooks/evolution/main"


def _count(session_factory, model):
    s = session_factory()
    try:
        return s.query(model).count()
    finally:
        s.close()


def test_first_message_from_unknown_number(client, session_factory):
    r = client.post(URL, json=upsert_payload())
    assert r.status_code == 200
    assert r.json() == {"success": True}

    s = session_factory()
    customer = s.query(Customer).one()
    contact = s.query(Contact).one()
    ticket = s.query(Ticket).one()
    msg = s.query(Message).one()
    assert customer.name == "Joana"
    assert contact.whatsapp_number == "5511988887777"
    assert ticket.title == "WhatsApp Support Request"
    assert ticket.description == "Meu boleto não chegou"
    assert ticket.number.startswith("TK-")
    assert msg.content == "Meu boleto não chegou"
    assert msg.ticket_id == ticket.id
    s.close()


def test_second_message_joins_open_ticket(client, session_factory):
    client.post(URL, json=upsert_payload(msg_id="A1"))
    client.post(URL, json=upsert_payload(msg_id="A2", text="Alguém aí?"))
    assert _count(session_factory, Ticket) == 1
    assert _count(session_factory, Message) == 2


def test_redelivered_event_is_stored_once(client, session_factory):
    client.post(URL, json=upsert_payload(msg_id="DUP"))
    r = client.post(URL, json=upsert_payload(msg_id="DUP"))
    assert r.json() == {"success": True}
    assert _count(session_factory, Message) == 1


def test_own_echo_is_ignored(client, session_factory):
    client.post(URL, json=upsert_payload(from_me=True))
    assert _count(session_factory, Ticket) == 0


def test_group_message_is_ignored(client, session_factory):
    payload = upsert_payload()
    payload["data"]["key"]["remoteJid"] = "120363025@g.us"
    client.post(URL, json=payload)
    assert _count(session_factory, Contact) == 0


def test_uppercase_event_name(client, session_factory):
    payload = upsert_payload()
    payload["event"] = "MESSAGES_UPSERT"
    client.post(URL, json=payload)
    assert _count(session_factory, Message) == 1


def test_delivery_status_callback(client, session_factory):
    client.post(URL, json=upsert_payload(msg_id="IN1"))
    s = session_factory()
    ticket = s.query(Ticket).one()
    s.add(Message(ticket_id=ticket.id, direction=MessageDirection.outbound, content="Já verificamos",
                  provider_message_id="OUT1", status=MessageStatus.sent))
    s.commit()
    s.close()

    for code in (2, 3, 2):
        r = client.post(URL, json={"event": "message.status", "data": {"key": {"id": "OUT1"}, "status": code}})
        assert r.json() == {"success": True}

    s = session_factory()
    assert s.query(Message).filter_by(provider_message_id="OUT1").one().status == MessageStatus.read
    s.close()


def test_garbage_is_acknowledged(client):
    assert client.post(URL, content=b"not json", headers={"content-type": "application/json"}).json() == {"success": True}
    assert client.post(URL, json=["a", "b"]).json() == {"success": True}
    assert client.post(URL, json={"event": "connection.update", "data": {"state": "open"}}).json() == {"success": True}
    assert client.post(URL, json={"event": "message.upsert", "data": {"key": {}}}).json() == {"success": True}


def test_webhook_needs_no_token(client):
    assert client.post(URL, json=upsert_payload()).status_code == 200


def test_new_ticket_is_pushed_to_agents(client):
    with client.websocket_connect(f"/ws?token={make_token('agent-1', 'agent')}") as ws:
        assert ws.receive_json()["type"] == "connection"
        client.post(URL, json=upsert_payload(msg_id="PUSH1"))
        event = ws.receive_json()
    assert event["type"] == "new_ticket"
    assert event["ticket"]["title"] == "WhatsApp Support Request"


def test_redelivery_after_resolve_opens_no_ticket(client, session_factory, auth_headers):
    client.post(URL, json=upsert_payload(msg_id="X1"))
    tid = client.get("/api/tickets", headers=auth_headers).json()["items"][0]["id"]
    client.patch(f"/api/tickets/{tid}", headers=auth_headers, json={"status": "resolved"})

    with client.websocket_connect(f"/ws?token={make_token('agent-2', 'agent')}") as ws:
        ws.receive_json()
        assert client.post(URL, json=upsert_payload(msg_id="X1")).json() == {"success": True}
        # a fresh message still reaches the agent, so the redelivery pushed nothing before it
        client.post(URL, json=upsert_payload(msg_id="X2", text="voltou a cair"))
        event = ws.receive_json()
    assert event["type"] == "new_ticket"
    assert event["ticket"]["description"] == "voltou a cair"
    assert _count(session_factory, Ticket) == 2
    assert _count(session_factory, Message) == 2


def test_status_callback_reaches_agent_reply(client, session_factory, auth_headers, dispatcher):
    client.post(URL, json=upsert_payload(msg_id="IN2"))
    tid = client.get("/api/tickets", headers=auth_headers).json()["items"][0]["id"]
    dispatcher.provider_id = "3EB0REPLY"
    reply = client.post(f"/api/tickets/{tid}/messages", headers=auth_headers, json={"content": "ola"}).json()
    assert reply["status"] == "sent"

    client.post(URL, json={"event": "messages.update", "data": {"keyId": "3EB0REPLY", "update": {"status": "READ"}}})

    s = session_factory()
    msg = s.get(Message, reply["id"])
    assert msg.provider_message_id == "3EB0REPLY"
    assert msg.status == MessageStatus.read
    s.close()


def test_malformed_status_code_is_ignored(client, session_factory, auth_headers, dispatcher):
    client.post(URL, json=upsert_payload(msg_id="IN3"))
    tid = client.get("/api/tickets", headers=auth_headers).json()["items"][0]["id"]
    dispatcher.provider_id = "3EB0ODD"
    client.post(f"/api/tickets/{tid}/messages", headers=auth_headers, json={"content": "ola"})

    for code in ({"ack": 3}, [3]):
        r = client.post(URL, json={"event": "message.status", "data": {"key": {"id": "3EB0ODD"}, "status": code}})
        assert r.json() == {"success": True}

    s = session_factory()
    assert s.query(Message).filter_by(provider_message_id="3EB0ODD").one().status == MessageStatus.sent
    s.close()
