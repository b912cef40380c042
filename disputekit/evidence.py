"""Dispute evidence: drafts, submission to Stripe and history"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from disputekit import config, oauth, stripe_service
from disputekit.errors import NotConnected, NotFound, UpstreamFailure, ValidationFailed
from disputekit.models import Dispute, Evidence, StripeAccount, User

logger = logging.getLogger(__name__)

UNDER_REVIEW = "under_review"


@dataclass
class SubmissionResult:
    evidence_id: Optional[str]          # local Evidence row, None if it could not be stored
    submitted_to_stripe: bool
    stripe_evidence_id: Optional[str] = None


def get_owned_dispute(db: Session, user: User, dispute_id: str) -> Dispute:
    dispute = db.query(Dispute).filter_by(id=dispute_id, user_id=user.id).first()
    if dispute is None:
        raise NotFound("Dispute not found")
    return dispute


def _require_content(content: Optional[str]) -> str:
    if not content or not content.strip():
        raise ValidationFailed("Response content required")
    return content


def list_evidence(db: Session, user: User, dispute_id: str) -> List[Evidence]:
    get_owned_dispute(db, user, dispute_id)
    return (
        db.query(Evidence)
        .filter_by(dispute_id=dispute_id, user_id=user.id)
        .order_by(Evidence.created_at.desc())
        .all()
    )


def save_draft(db: Session, user: User, dispute_id: str, content: Optional[str]) -> Evidence:
    dispute = get_owned_dispute(db, user, dispute_id)
    content = _require_content(content)

    evidence = Evidence(dispute_id=dispute.id, user_id=user.id, content=content)
    db.add(evidence)
    db.commit()
    db.refresh(evidence)
    return evidence


def _record_submission(db: Session, user: User, dispute: Dispute, content: str,
                       stripe_evidence_id: Optional[str]) -> Optional[str]:
    submitted = stripe_evidence_id is not None
    evidence = Evidence(
        dispute_id=dispute.id,
        user_id=user.id,
        content=content,
        submitted_to_stripe=submitted,
        stripe_evidence_id=stripe_evidence_id,
        submitted_at=datetime.now(timezone.utc) if submitted else None,
    )
    try:
        db.add(evidence)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Error saving evidence for dispute {dispute.id}: {e}")
        return None
    return evidence.id


def _mark_under_review(db: Session, dispute: Dispute) -> None:
    dispute.status = UNDER_REVIEW
    dispute.updated_at = datetime.now(timezone.utc)
    db.commit()


def submit_evidence(db: Session, user: User, dispute_id: str, content: Optional[str],
                    remote_submit_enabled: Optional[bool] = None) -> SubmissionResult:
    """Submit a response for a dispute.

    With remote submission enabled the text goes to Stripe first; the local
    evidence row and the status change to ``under_review`` are written after
    Stripe accepted it. Those writes are not atomic with the remote call: if
    one of them fails it is logged and the Stripe submission is not repeated,
    since submitting evidence twice is not safe.

    With remote submission disabled the response is only stored locally
    (``submitted_to_stripe`` stays False) and the dispute is left as is.
    """
    if remote_submit_enabled is None:
        remote_submit_enabled = config.remote_submit_enabled()

    dispute = get_owned_dispute(db, user, dispute_id)

    account = None
    if remote_submit_enabled:
        account = db.query(StripeAccount).filter_by(
            stripe_account_id=dispute.stripe_account_id, user_id=user.id
        ).first()
        if account is None:
            raise NotConnected()

    content = _require_content(content)

    if not remote_submit_enabled:
        evidence_id = _record_submission(db, user, dispute, content, None)
        if evidence_id is None:
            raise UpstreamFailure("Failed to save evidence")
        return SubmissionResult(evidence_id=evidence_id, submitted_to_stripe=False)

    access_token = oauth.usable_access_token(db, account)
    try:
        remote = stripe_service.submit_evidence(access_token, dispute.stripe_dispute_id, content)
    except Exception as e:
        logger.error(f"Error submitting evidence for {dispute.stripe_dispute_id}: {type(e).__name__}: {e}")
        raise UpstreamFailure("Failed to submit evidence")

    stripe_evidence_id = remote.get("id") or dispute.stripe_dispute_id
    logger.info(f"Submitted evidence for {dispute.stripe_dispute_id}")

    evidence_id = _record_submission(db, user, dispute, content, stripe_evidence_id)

    try:
        _mark_under_review(db, dispute)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"Evidence for {dispute.stripe_dispute_id} was accepted by Stripe but the "
            f"status update failed; not resubmitting: {e}"
        )

    return SubmissionResult(
        evidence_id=evidence_id,
        submitted_to_stripe=True,
        stripe_evidence_id=stripe_evidence_id,
    )
