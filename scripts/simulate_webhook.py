#!/usr/bin/env python3
"""
Send a signed MoneyFusion-style webhook to a running API.

Usage:
    python scripts/simulate_webhook.py <payment_id> paid
    python scripts/simulate_webhook.py <payment_id> failed --token TOKEN --amount 5000
    python scripts/simulate_webhook.py --session <session_id> paid

Environment Variables:
    MONEYFUSION_WEBHOOK_SECRET: Shared secret used to sign the body
    API_URL: Base API URL (default: http://localhost:8000)
"""

import argparse
import hashlib
import hmac
import json
import os
import sys

import dotenv
import requests

dotenv.load_dotenv()

EVENTS = {
    "paid": "payin.session.completed",
    "failed": "payin.session.cancelled",
}


def build_payload(
    outcome: str,
    payment_id: str | None,
    session_id: str | None,
    token: str,
    amount: int | None,
) -> dict:
    """Build a webhook body the way the gateway sends it."""
    correlation = {}
    if payment_id:
        correlation["paymentId"] = payment_id
    if session_id:
        correlation["sessionId"] = session_id

    payload = {
        "event": EVENTS[outcome],
        "statut": "paid" if outcome == "paid" else "failure",
        "tokenPay": token,
        "personal_Info": [correlation],
    }
    if amount is not None:
        payload["Montant"] = amount
    return payload


def send_webhook(payload: dict) -> dict:
    """POST the payload with its HMAC signature."""
    api_url = os.getenv("API_URL", "http://localhost:8000")
    url = f"{api_url}/api/v1/payments/webhook"
    body = json.dumps(payload).encode("utf-8")

    headers = {"Content-Type": "application/json"}
    secret = os.getenv("MONEYFUSION_WEBHOOK_SECRET")
    if secret:
        signature = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
        headers["X-Webhook-Signature"] = f"sha256={signature}"
    else:
        print("Warning: MONEYFUSION_WEBHOOK_SECRET not set, sending unsigned", file=sys.stderr)

    try:
        response = requests.post(url, data=body, headers=headers, timeout=30)
        response.raise_for_status()
        return response.json()
    except requests.exceptions.HTTPError as e:
        print(f"HTTP Error: {e}", file=sys.stderr)
        print(f"Response: {e.response.text}", file=sys.stderr)
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"Request Error: {e}", file=sys.stderr)
        sys.exit(1)


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Simulate a MoneyFusion payment webhook")
    parser.add_argument("payment_id", nargs="?", help="Payment ID to settle")
    parser.add_argument("outcome", choices=sorted(EVENTS), help="Payment outcome")
    parser.add_argument("--session", dest="session_id", help="Teleconsultation session ID")
    parser.add_argument("--token", default="SIMULATED-TOKEN", help="Gateway token (tokenPay)")
    parser.add_argument("--amount", type=int, help="Reported amount (Montant)")

    args = parser.parse_args()

    if not args.payment_id and not args.session_id:
        parser.error("a payment_id or --session is required")

    payload = build_payload(
        args.outcome,
        args.payment_id,
        args.session_id,
        args.token,
        args.amount,
    )
    result = send_webhook(payload)

    print("✓ Webhook delivered")
    print(f"   Applied: {result.get('applied')}")


if __name__ == "__main__":
    main()
