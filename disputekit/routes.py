import logging
from datetime import datetime
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from disputekit import auth, config, drafting, evidence as evidence_service, oauth
from disputekit.auth import get_current_user, get_optional_user, session_token
from disputekit.database import get_db
from disputekit.errors import ValidationFailed
from disputekit.models import Dispute, Evidence, User
from disputekit.sync import sync_disputes

logger = logging.getLogger(__name__)

router = APIRouter()

REASON_DESCRIPTIONS = {
    "duplicate": "The customer claims this charge was duplicated",
    "fraud": "The customer claims they did not authorize this charge",
    "product_not_received": "The customer claims they did not receive the product/service",
    "product_unacceptable": "The customer claims the product/service was not as described",
    "subscription_canceled": "The customer claims they canceled a subscription",
    "uncategorized": "The dispute does not fit standard categories",
}


class Credentials(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class ResponseBody(BaseModel):
    response: Optional[str] = None


class GenerateRequest(BaseModel):
    dispute: Optional[drafting.DisputeDetails] = None


def _iso(value):
    return value.isoformat() if value else None


def user_json(user: User) -> Dict[str, Any]:
    return {"id": user.id, "email": user.email}


def dispute_json(dispute: Dispute) -> Dict[str, Any]:
    return {
        "id": dispute.id,
        "stripe_dispute_id": dispute.stripe_dispute_id,
        "stripe_account_id": dispute.stripe_account_id,
        "charge_id": dispute.charge_id,
        "reason": dispute.reason,
        "amount": dispute.amount,
        "currency": dispute.currency,
        "status": dispute.status,
        "evidence_deadline": _iso(dispute.evidence_deadline),
        "payment_method_details": dispute.payment_method_details,
        "created_at": _iso(dispute.created_at),
        "updated_at": _iso(dispute.updated_at),
        "synced_at": _iso(dispute.synced_at),
    }


def record_json(record: Dict[str, Any]) -> Dict[str, Any]:
    """A synced dispute record with its timestamps rendered as ISO strings"""
    return {k: _iso(v) if isinstance(v, datetime) else v for k, v in record.items()}


def evidence_json(evidence: Evidence) -> Dict[str, Any]:
    return {
        "id": evidence.id,
        "dispute_id": evidence.dispute_id,
        "content": evidence.content,
        "submitted_to_stripe": evidence.submitted_to_stripe,
        "stripe_evidence_id": evidence.stripe_evidence_id,
        "submitted_at": _iso(evidence.submitted_at),
        "created_at": _iso(evidence.created_at),
    }


def _session_response(user: User, token: str, **extra) -> JSONResponse:
    response = JSONResponse({"user": user_json(user), "access_token": token, **extra})
    response.set_cookie(auth.SESSION_COOKIE, token, httponly=True, samesite="lax")
    return response


def _dashboard_redirect(**params) -> RedirectResponse:
    return RedirectResponse(f"{config.app_url()}/dashboard?{urlencode(params)}")


def _user_disputes(db: Session, user: User):
    return (
        db.query(Dispute)
        .filter_by(user_id=user.id)
        .order_by(Dispute.created_at.desc())
        .all()
    )


# ---- auth ----

@router.post("/api/auth/signup")
def signup(body: Credentials, db: Session = Depends(get_db)):
    user = auth.sign_up(db, body.email, body.password)
    token = auth.create_access_token(user)
    return _session_response(user, token, message="Account created.")


@router.post("/api/auth/login")
def login(body: Credentials, db: Session = Depends(get_db)):
    user = auth.sign_in(db, body.email, body.password)
    return _session_response(user, auth.create_access_token(user))


@router.post("/api/auth/logout")
def logout(token: Optional[str] = Depends(session_token), db: Session = Depends(get_db)):
    auth.sign_out(db, token)
    response = JSONResponse({"message": "Logged out successfully"})
    response.delete_cookie(auth.SESSION_COOKIE)
    return response


# ---- stripe connect ----

@router.get("/api/stripe/connect")
def stripe_connect(user: Optional[User] = Depends(get_optional_user)):
    if user is None:
        return RedirectResponse(f"{config.app_url()}/login")
    return RedirectResponse(oauth.build_authorization_url())


@router.get("/api/stripe/callback")
def stripe_callback(
    code: Optional[str] = None,
    error: Optional[str] = None,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db)
):
    if error:
        return _dashboard_redirect(error=error)
    if not code:
        return _dashboard_redirect(error="No authorization code")
    if user is None:
        return RedirectResponse(f"{config.app_url()}/login")

    try:
        oauth.complete_authorization(db, user, code)
    except oauth.MissingTokens as e:
        return _dashboard_redirect(error=e.message)
    except SQLAlchemyError as e:
        logger.error(f"Database error saving Stripe account: {e}")
        return _dashboard_redirect(error="Failed to save account")
    except Exception as e:
        logger.error(f"Stripe OAuth error: {type(e).__name__}: {e}")
        return _dashboard_redirect(error="Failed to connect Stripe account")

    return _dashboard_redirect(success="Stripe account connected")


@router.delete("/api/stripe/disconnect")
def stripe_disconnect(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    oauth.disconnect(db, user)
    return {"message": "Stripe account disconnected"}


# ---- disputes ----

@router.post("/api/disputes/sync")
def disputes_sync(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    result = sync_disputes(db, user)
    return {
        "success": True,
        "count": result.count,
        "message": f"Synced {result.count} disputes",
        "disputes": [record_json(d) for d in result.disputes],
    }


@router.get("/api/disputes")
def disputes_list(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return {"disputes": [dispute_json(d) for d in _user_disputes(db, user)]}


@router.get("/api/disputes/{dispute_id}")
def dispute_detail(dispute_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    dispute = evidence_service.get_owned_dispute(db, user, dispute_id)
    history = evidence_service.list_evidence(db, user, dispute_id)
    return {
        "dispute": dispute_json(dispute),
        "reason_description": REASON_DESCRIPTIONS.get(dispute.reason, "Standard dispute"),
        "evidence": [evidence_json(e) for e in history],
    }


@router.post("/api/disputes/{dispute_id}/evidence")
def dispute_save_draft(
    dispute_id: str,
    body: ResponseBody,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    saved = evidence_service.save_draft(db, user, dispute_id, body.response)
    return {"evidence": evidence_json(saved)}


@router.post("/api/disputes/{dispute_id}/submit")
def dispute_submit(
    dispute_id: str,
    body: ResponseBody,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    result = evidence_service.submit_evidence(db, user, dispute_id, body.response)
    if result.submitted_to_stripe:
        return {
            "success": True,
            "message": "Evidence submitted to Stripe",
            "evidenceId": result.stripe_evidence_id,
            "submitted_to_stripe": True,
        }
    return {
        "success": True,
        "message": "Response saved",
        "evidenceId": result.evidence_id,
        "submitted_to_stripe": False,
    }


@router.post("/api/disputes/{dispute_id}/draft")
def dispute_draft(dispute_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    dispute = evidence_service.get_owned_dispute(db, user, dispute_id)
    return {"response": drafting.generate_response(drafting.DisputeDetails.from_dispute(dispute))}


@router.get("/api/dashboard")
def dashboard(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    account = oauth.get_account(db, user)
    if account is None:
        return {"connected": False}

    disputes = _user_disputes(db, user)
    won = [d for d in disputes if d.status == "won"]
    return {
        "connected": True,
        "stripe_account_id": account.stripe_account_id,
        "last_synced_at": _iso(account.last_synced_at),
        "open_disputes": len([d for d in disputes if d.status == "needs_response"]),
        "total_disputed": sum(d.amount or 0 for d in disputes),
        "win_rate": round(len(won) / len(disputes) * 100) if disputes else 0,
        "won": len(won),
        "total": len(disputes),
        "disputes": [dispute_json(d) for d in disputes],
    }


# ---- ai ----

@router.post("/api/ai/generate", dependencies=[Depends(get_current_user)])
def ai_generate(body: GenerateRequest):
    if body.dispute is None:
        raise ValidationFailed("Dispute data required")
    return {"response": drafting.generate_response(body.dispute)}
