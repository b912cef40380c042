"""Thin wrappers around the Stripe API.

No module-level ``stripe.api_key`` is set: platform calls use the configured
secret key and connected-account calls use the merchant's OAuth access token,
both passed per call.
"""
from urllib.parse import urlencode

import stripe

from disputekit import config

STRIPE_OAUTH_AUTHORIZE_URL = "https://connect.stripe.com/oauth/authorize"
DISPUTE_PAGE_LIMIT = 100


def platform_api_key() -> str:
    return config.require("STRIPE_SECRET_KEY")


def get_oauth_url() -> str:
    params = {
        "response_type": "code",
        "client_id": config.require("STRIPE_CLIENT_ID"),
        "scope": "read_write",
        "redirect_uri": f"{config.app_url()}/api/stripe/callback",
    }
    return f"{STRIPE_OAUTH_AUTHORIZE_URL}?{urlencode(params)}"


def exchange_code_for_token(code: str):
    return stripe.OAuth.token(
        grant_type="authorization_code",
        code=code,
        api_key=platform_api_key()
    )


def refresh_token(refresh_token: str):
    return stripe.OAuth.token(
        grant_type="refresh_token",
        refresh_token=refresh_token,
        api_key=platform_api_key()
    )


def list_disputes(access_token: str):
    # Single page only; accounts with more open disputes are truncated
    return stripe.Dispute.list(limit=DISPUTE_PAGE_LIMIT, api_key=access_token)


def submit_evidence(access_token: str, stripe_dispute_id: str, response_text: str):
    return stripe.Dispute.modify(
        stripe_dispute_id,
        evidence={"uncategorized_text": response_text},
        submit=True,
        api_key=access_token
    )
