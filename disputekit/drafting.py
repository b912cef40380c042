"""AI drafting of dispute responses through an LLM chat-completion gateway"""
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from disputekit import config
from disputekit.errors import UpstreamFailure

logger = logging.getLogger(__name__)

MAX_TOKENS = 1000
TEMPERATURE = 0.7
REQUEST_TIMEOUT = 60.0
FALLBACK_REASON = "uncategorized"

RESPONSE_TEMPLATES = {
    "duplicate": (
        "You are a Stripe dispute expert. The customer has filed a duplicate dispute claim for a charge. "
        "Write a professional, persuasive response to dispute this chargeback. Include: "
        "1) Explanation that this is a single, legitimate charge, 2) Original transaction ID and timestamp, "
        "3) Evidence that the customer received the product/service, 4) Any relevant customer communications. "
        "Keep it concise but compelling."
    ),
    "fraud": (
        "You are a Stripe dispute expert. The customer has filed a fraud claim, claiming they did not "
        "authorize this charge. Write a professional, persuasive response to dispute this chargeback. Include: "
        "1) Evidence of cardholder verification (AVS/CVV matches), 2) IP address and location data if available, "
        "3) Account history showing previous legitimate charges, 4) Any proof of delivery or service completion. "
        "Be factual and thorough."
    ),
    "product_not_received": (
        "You are a Stripe dispute expert. The customer claims they did not receive the product/service. "
        "Write a professional, persuasive response to dispute this chargeback. Include: "
        "1) Delivery confirmation/shipping proof, 2) Tracking information, 3) Signature confirmation if available, "
        "4) Communication history showing customer satisfaction. Be specific and evidence-based."
    ),
    "product_unacceptable": (
        "You are a Stripe dispute expert. The customer claims the product/service was not as described. "
        "Write a professional, persuasive response to dispute this chargeback. Include: "
        "1) Detailed product/service description from time of purchase, 2) Evidence the delivered product "
        "matched description, 3) Any customer communications or acknowledgments, 4) Return/refund policy if "
        "applicable. Be diplomatic but firm."
    ),
    "subscription_canceled": (
        "You are a Stripe dispute expert. The customer claims they canceled a subscription. "
        "Write a professional, persuasive response to dispute this chargeback. Include: "
        "1) Subscription terms and cancellation policy, 2) Proof of service delivery after supposed cancellation "
        "date, 3) Customer's billing history showing continued access, 4) Any cancellation confirmations or "
        "lack thereof."
    ),
    "uncategorized": (
        "You are a Stripe dispute expert. Write a professional, persuasive response to dispute this chargeback. "
        "Include: 1) Transaction details and proof of legitimate charge, 2) Evidence the customer received the "
        "product/service, 3) Any relevant communications, 4) Any additional context that supports keeping "
        "the charge."
    ),
}

CLOSING_INSTRUCTION = (
    "Write a compelling dispute response (200-400 words) that addresses all relevant points. "
    "Use a professional but firm tone."
)


class DisputeDetails(BaseModel):
    """Dispute fields used to fill a prompt; everything is optional"""
    amount: Optional[int] = None
    currency: Optional[str] = None
    reason: Optional[str] = None
    charge_id: Optional[str] = None
    created_at: Optional[datetime] = None
    payment_method_details: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dispute(cls, dispute) -> "DisputeDetails":
        return cls(
            amount=dispute.amount,
            currency=dispute.currency,
            reason=dispute.reason,
            charge_id=dispute.charge_id,
            created_at=dispute.created_at,
            payment_method_details=dispute.payment_method_details,
        )

    def card(self) -> Dict[str, Any]:
        card = (self.payment_method_details or {}).get("card")
        return card if isinstance(card, dict) else {}


def select_template(reason: Optional[str]) -> str:
    return RESPONSE_TEMPLATES.get(reason or FALLBACK_REASON, RESPONSE_TEMPLATES[FALLBACK_REASON])


def format_amount(amount: Optional[int], currency: Optional[str]) -> str:
    return f"${(amount or 0) / 100:.2f} {(currency or 'usd').upper()}"


def build_prompt(dispute: DisputeDetails) -> str:
    reason = dispute.reason or FALLBACK_REASON
    created = dispute.created_at
    card = dispute.card()

    details = "\n".join([
        "Dispute Details:",
        f"- Charge Amount: {format_amount(dispute.amount, dispute.currency)}",
        f"- Dispute Reason: {reason.replace('_', ' ')}",
        f"- Charge ID: {dispute.charge_id or 'N/A'}",
        f"- Transaction Date: {f'{created.month}/{created.day}/{created.year}' if created else 'N/A'}",
        f"- Customer Payment Method: {card.get('brand') or 'card'} ending in {card.get('last4') or '****'}",
    ])
    return f"{select_template(dispute.reason)}\n\n{details}\n\n{CLOSING_INSTRUCTION}"


def _first_completion(data) -> str:
    try:
        content = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        return ""
    return content if isinstance(content, str) else ""


def generate_response(dispute: DisputeDetails) -> str:
    """Ask the LLM gateway for a draft response; "" if the reply is malformed"""
    api_key = config.require("OPENROUTER_API_KEY")

    payload = {
        "model": config.llm_model(),
        "messages": [{"role": "user", "content": build_prompt(dispute)}],
        "max_tokens": MAX_TOKENS,
        "temperature": TEMPERATURE,
    }
    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
        "HTTP-Referer": config.app_url(),
        "X-Title": "DisputeKit",
    }

    try:
        response = httpx.post(config.llm_api_url(), json=payload, headers=headers, timeout=REQUEST_TIMEOUT)
    except httpx.HTTPError as e:
        logger.error(f"LLM gateway request failed: {type(e).__name__}: {e}")
        raise UpstreamFailure("Failed to generate response")

    if not response.is_success:
        logger.error(f"LLM gateway error {response.status_code}: {response.text}")
        raise UpstreamFailure("Failed to generate response")

    try:
        data = response.json()
    except ValueError:
        logger.warning("LLM gateway returned a non-JSON body")
        return ""
    return _first_completion(data)
