from unittest.mock import patch, MagicMock

from ticketdesk.providers.base import parse_upsert, parse_status
from ticketdesk.storage.models import MessageStatus
from ticketdesk.tools.simulate_inbound import build_upsert_payload, build_status_payload, main


def test_upsert_payload_is_what_the_webhook_parses():
    payload = build_upsert_payload("5511988887777", "oi", "Joana", message_id="SIM1")
    assert payload["event"] == "message.upsert"
    event = parse_upsert(payload["data"], "local")
    assert event.address == "5511988887777"
    assert event.display_name == "Joana"
    assert event.provider_message_id == "SIM1"
    assert event.body.plain_text == "oi"


def test_generated_ids_are_unique():
    a = build_upsert_payload("551199", "x")["data"]["key"]["id"]
    b = build_upsert_payload("551199", "x")["data"]["key"]["id"]
    assert a != b


def test_status_payload():
    event = parse_status(build_status_payload("OUT1", 3)["data"])
    assert event.provider_message_id == "OUT1"
    assert event.status == MessageStatus.read


def test_status_mode_posts_once():
    resp = MagicMock(status_code=200, headers={"content-type": "application/json"})
    resp.json.return_value = {"success": True}
    with patch("ticketdesk.tools.simulate_inbound.requests.post", return_value=resp) as post:
        rc = main(["--base", "http://desk", "--instance", "main", "--number", "551199", "--status", "OUT1", "2"])
    assert rc == 0
    url = post.call_args[0][0]
    assert url == "http://desk/api/webhooks/evolution/main"
    assert post.call_args[1]["json"]["data"] == {"key": {"id": "OUT1"}, "status": 2}
