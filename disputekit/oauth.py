"""Stripe Connect OAuth: connect, callback exchange, refresh and disconnect"""
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from disputekit import cipher, stripe_service
from disputekit.errors import UpstreamFailure, ValidationFailed
from disputekit.models import StripeAccount, User

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = 3600  # seconds


class MissingTokens(ValidationFailed):
    default_message = "Failed to get access token"


def build_authorization_url() -> str:
    return stripe_service.get_oauth_url()


def _expiry(response) -> datetime:
    lifetime = response.get("expires_in") or DEFAULT_TOKEN_LIFETIME
    return datetime.now(timezone.utc) + timedelta(seconds=int(lifetime))


def complete_authorization(db: Session, user: User, code: str) -> StripeAccount:
    """Exchange an authorization code and store the encrypted token pair.

    The row is written in a single commit with both tokens already encrypted;
    on any failure the session is rolled back and nothing is persisted.
    """
    response = stripe_service.exchange_code_for_token(code)

    stripe_account_id = response.get("stripe_user_id")
    access_token = response.get("access_token")
    refresh_token = response.get("refresh_token")
    if not stripe_account_id or not access_token or not refresh_token:
        raise MissingTokens()

    values = {
        "user_id": user.id,
        "stripe_email": user.email,
        "access_token_encrypted": cipher.encrypt(access_token),
        "refresh_token_encrypted": cipher.encrypt(refresh_token),
        "token_expires_at": _expiry(response),
    }

    try:
        # One active connection per user: connecting another account replaces it
        db.query(StripeAccount).filter(
            StripeAccount.user_id == user.id,
            StripeAccount.stripe_account_id != stripe_account_id
        ).delete(synchronize_session=False)

        account = db.query(StripeAccount).filter_by(stripe_account_id=stripe_account_id).first()
        if account is None:
            account = StripeAccount(stripe_account_id=stripe_account_id, **values)
            db.add(account)
        else:
            for field, value in values.items():
                setattr(account, field, value)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(account)
    logger.info(f"Connected Stripe account {stripe_account_id} for user {user.id}")
    return account


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def token_expired(account: StripeAccount) -> bool:
    if account.token_expires_at is None:
        return False
    return _as_utc(account.token_expires_at) <= datetime.now(timezone.utc)


def refresh_tokens(db: Session, account: StripeAccount) -> str:
    """Run the refresh_token grant and store the new pair; returns the access token"""
    try:
        response = stripe_service.refresh_token(cipher.decrypt(account.refresh_token_encrypted))
    except Exception as e:
        logger.error(f"Token refresh failed for {account.stripe_account_id}: {type(e).__name__}: {e}")
        raise UpstreamFailure("Failed to refresh Stripe access")

    access_token = response.get("access_token")
    if not access_token:
        raise UpstreamFailure("Failed to refresh Stripe access")

    account.access_token_encrypted = cipher.encrypt(access_token)
    if response.get("refresh_token"):
        account.refresh_token_encrypted = cipher.encrypt(response.get("refresh_token"))
    account.token_expires_at = _expiry(response)
    db.commit()
    logger.info(f"Refreshed tokens for Stripe account {account.stripe_account_id}")
    return access_token


def usable_access_token(db: Session, account: StripeAccount) -> str:
    """Plaintext access token for a remote call, refreshed when expired.

    Follows the fail-soft decryption contract: an undecryptable token comes
    back as "" and the remote call made with it fails.
    """
    if token_expired(account):
        return refresh_tokens(db, account)
    return cipher.decrypt(account.access_token_encrypted)


def get_account(db: Session, user: User):
    return db.query(StripeAccount).filter_by(user_id=user.id).first()


def disconnect(db: Session, user: User) -> int:
    deleted = db.query(StripeAccount).filter_by(user_id=user.id).delete()
    db.commit()
    if deleted:
        logger.info(f"Disconnected Stripe for user {user.id}")
    return deleted
