#!/usr/bin/env python3
"""
Send signed Stripe webhook events to a local server.

Signs payloads the way Stripe does (HMAC-SHA256 over "{timestamp}.{body}")
so the endpoint's real verification path runs.

Usage:
    # Start your server first
    uvicorn main:app --reload

    # Then run this script
    python scripts/send_stripe_webhook.py --event subscription_active --org <organization_id>
    python scripts/send_stripe_webhook.py --event payment_failed --customer cus_123
    python scripts/send_stripe_webhook.py --event invalid_signature
"""

import argparse
import hashlib
import hmac
import json
import os
import time
import uuid

import httpx

DEFAULT_SECRET = os.getenv("STRIPE_WEBHOOK_SECRET", "whsec_local_test")
DEFAULT_BASE_URL = os.getenv("TEST_BASE_URL", "http://localhost:8000")
WEBHOOK_PATH = "/api/webhooks/stripe"


def sign(payload: bytes, secret: str, timestamp: int) -> str:
    """Build a Stripe-Signature header value."""
    signed = f"{timestamp}.".encode("utf-8") + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def build_event(event_type: str, obj: dict) -> dict:
    return {
        "id": f"evt_local_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "data": {"object": obj},
    }


def send_event(event: dict, secret: str, base_url: str, signature: str = None):
    url = f"{base_url}{WEBHOOK_PATH}"
    payload = json.dumps(event).encode("utf-8")
    headers = {
        "Content-Type": "application/json",
        "Stripe-Signature": signature or sign(payload, secret, int(time.time())),
    }

    print(f"\n{'='*60}")
    print(f"Sending {event['type']} ({event['id']})")
    print(f"URL: {url}")
    print(f"{'='*60}\n")

    try:
        response = httpx.post(url, content=payload, headers=headers)
    except httpx.HTTPError as e:
        print(f"Error: {e}")
        return None
    print(f"Response Status: {response.status_code}")
    print(f"Response Body: {response.text}")
    return response


def subscription_object(args, status: str) -> dict:
    now = int(time.time())
    return {
        "id": args.subscription,
        "object": "subscription",
        "customer": args.customer,
        "status": status,
        "metadata": {"organization_id": args.org} if args.org else {},
        "items": {"data": [{"id": "si_local", "price": {"id": args.price}}]},
        "current_period_start": now,
        "current_period_end": now + 30 * 86400,
        "cancel_at_period_end": False,
    }


def subscription_active(args):
    return send_event(
        build_event("customer.subscription.updated", subscription_object(args, "active")),
        args.secret, args.base_url,
    )


def subscription_deleted(args):
    return send_event(
        build_event("customer.subscription.deleted", subscription_object(args, "canceled")),
        args.secret, args.base_url,
    )


def payment_failed(args):
    invoice = {
        "id": f"in_local_{uuid.uuid4().hex[:8]}",
        "object": "invoice",
        "customer": args.customer,
        "subscription": args.subscription,
        "amount_due": 14900,
        "currency": "eur",
        "attempt_count": 1,
    }
    return send_event(build_event("invoice.payment_failed", invoice), args.secret, args.base_url)


def invalid_signature(args):
    print("Testing INVALID signature (should be rejected with 401)")
    response = send_event(
        build_event("invoice.paid", {"id": "in_invalid"}),
        args.secret, args.base_url,
        signature=f"t={int(time.time())},v1={'0' * 64}",
    )
    if response is not None:
        print("Correctly rejected" if response.status_code == 401 else "WARNING: signature NOT rejected")
    return response


EVENTS = {
    "subscription_active": subscription_active,
    "subscription_deleted": subscription_deleted,
    "payment_failed": payment_failed,
    "invalid_signature": invalid_signature,
}


def main():
    parser = argparse.ArgumentParser(description="Send signed Stripe webhooks to a local server")
    parser.add_argument("--event", choices=list(EVENTS.keys()), default="subscription_active")
    parser.add_argument("--org", help="organization_id written into subscription metadata")
    parser.add_argument("--customer", default="cus_local_test")
    parser.add_argument("--subscription", default="sub_local_test")
    parser.add_argument("--price", default=os.getenv("STRIPE_PRICE_PROFESSIONAL_MONTHLY", "price_local_test"))
    parser.add_argument(
        "--secret",
        default=DEFAULT_SECRET,
        help="Webhook secret (default: STRIPE_WEBHOOK_SECRET env var)",
    )
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL)

    args = parser.parse_args()
    EVENTS[args.event](args)


if __name__ == "__main__":
    main()
