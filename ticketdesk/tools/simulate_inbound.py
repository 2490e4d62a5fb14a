#!/usr/bin/env python3
"""Play the customer's side: type lines, they arrive at the webhook as WhatsApp messages."""
import argparse, requests, sys, time, uuid


def build_upsert_payload(address, text, push_name=None, message_id=None, instance="local"):
    return {
        "event": "message.upsert",
        "instance": instance,
        "data": {
            "key": {
                "remoteJid": f"{address}@s.whatsapp.net",
                "id": message_id or f"SIM{uuid.uuid4().hex[:16].upper()}",
                "fromMe": False,
            },
            "pushName": push_name,
            "message": {"conversation": text},
        },
    }


def build_status_payload(message_id, code, instance="local"):
    return {
        "event": "message.status",
        "instance": instance,
        "data": {"key": {"id": message_id}, "status": code},
    }


def post(base, path, payload):
    r = requests.post(f"{base}{path}", json=payload, timeout=30)
    r.raise_for_status()
    if r.headers.get("content-type", "").startswith("application/json"):
        return r.json()
    return {"text": r.text}


def main(argv=None):
    p = argparse.ArgumentParser(description="Simulate inbound WhatsApp traffic against a running ticketdesk.")
    p.add_argument("--base", default="http://localhost:8000", help="API base URL")
    p.add_argument("--instance", default="local", help="Instance key in the webhook path")
    p.add_argument("--number", required=True, help="Customer number to simulate (e.g. 5511999990000)")
    p.add_argument("--name", default=None, help="Display name (pushName)")
    p.add_argument("--status", nargs=2, metavar=("MESSAGE_ID", "CODE"),
                   help="Send one delivery status callback instead of chatting")
    args = p.parse_args(argv)

    path = f"/api/webhooks/evolution/{args.instance}"

    if args.status:
        message_id, code = args.status
        resp = post(args.base, path, build_status_payload(message_id, int(code) if code.isdigit() else code, args.instance))
        print(f"[server] {resp}")
        return 0

    print("\nType a customer message and hit Enter. Ctrl+C to quit.\n")
    while True:
        try:
            text = input(f"[{args.number}] ").strip()
            if not text:
                continue
            payload = build_upsert_payload(args.number, text, args.name, instance=args.instance)
            try:
                resp = post(args.base, path, payload)
            except requests.HTTPError as he:
                print(f"[server HTTP {he.response.status_code}] {he.response.text}")
                continue
            print(f"[server] id={payload['data']['key']['id']} success={resp.get('success')}")
        except (KeyboardInterrupt, EOFError):
            print("\nBye!")
            return 0
        except requests.RequestException as e:
            print(f"[connection error] {e}")
            time.sleep(0.5)


if __name__ == "__main__":
    sys.exit(main())
