import json
from typing import Optional

import pytest
from libs.common.config import get_settings
from tests.factories import stripe_signature

settings = get_settings()

WEBHOOK_PATHS = {
    "mahad": ("/billing/webhooks/stripe/mahad", "STRIPE_WEBHOOK_SECRET_MAHAD"),
    "dugsi": ("/billing/webhooks/stripe/dugsi", "STRIPE_WEBHOOK_SECRET_DUGSI"),
}


@pytest.fixture
def post_webhook(client):
    """Sign and POST a Stripe event to one of the program endpoints."""

    async def _post(event: dict, program: str = "mahad", secret: Optional[str] = None):
        path, secret_name = WEBHOOK_PATHS[program]
        payload = json.dumps(event)
        signature = stripe_signature(payload, secret or getattr(settings, secret_name))
        return await client.post(
            path,
            content=payload,
            headers={"stripe-signature": signature, "content-type": "application/json"},
        )

    return _post
