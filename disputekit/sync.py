"""Mirror a connected account's Stripe disputes into the local store"""
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from disputekit import oauth, stripe_service
from disputekit.errors import NotConnected, UpstreamFailure
from disputekit.models import Dispute, User

logger = logging.getLogger(__name__)

# Columns owned by Stripe; a change in any of them counts as an update
MIRRORED_FIELDS = (
    "stripe_account_id", "charge_id", "reason", "amount", "currency",
    "status", "evidence_deadline", "payment_method_details", "created_at",
)


def _from_epoch(value) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (ValueError, TypeError, OverflowError, OSError):
        logger.warning(f"Ignoring unreadable Stripe timestamp {value!r}")
        return None


def _plain(value):
    """Convert nested StripeObjects into plain dicts/lists for JSON storage"""
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


@dataclass
class RemoteDispute:
    """A Stripe dispute object decoded field by field"""
    stripe_dispute_id: str
    charge_id: Optional[str] = None
    reason: Optional[str] = None
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    evidence_deadline: Optional[datetime] = None
    payment_method_details: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_stripe(cls, obj) -> "RemoteDispute":
        charge = obj.get("charge")
        if isinstance(charge, Mapping):
            charge = charge.get("id")

        evidence_details = obj.get("evidence_details") or {}
        pm_details = obj.get("payment_method_details")

        return cls(
            stripe_dispute_id=obj["id"],
            charge_id=charge,
            reason=obj.get("reason"),
            amount=obj.get("amount"),
            currency=obj.get("currency"),
            status=obj.get("status"),
            evidence_deadline=_from_epoch(evidence_details.get("due_by")),
            payment_method_details=_plain(pm_details) if pm_details is not None else None,
            created_at=_from_epoch(obj.get("created")),
        )

    def as_record(self, stripe_account_id: str, synced_at: datetime) -> Dict[str, Any]:
        return {
            "stripe_dispute_id": self.stripe_dispute_id,
            "stripe_account_id": stripe_account_id,
            "charge_id": self.charge_id,
            "reason": self.reason,
            "amount": self.amount,
            "currency": self.currency,
            "status": self.status,
            "evidence_deadline": self.evidence_deadline,
            "payment_method_details": self.payment_method_details,
            "created_at": self.created_at or synced_at,
            "updated_at": synced_at,
            "synced_at": synced_at,
        }


@dataclass
class SyncResult:
    count: int
    disputes: List[Dict[str, Any]] = field(default_factory=list)


class ForeignDispute(Exception):
    """The dispute id is already mirrored for another user"""


def fetch_remote_disputes(access_token: str) -> List[RemoteDispute]:
    page = stripe_service.list_disputes(access_token)
    disputes = []
    for obj in page.get("data") or []:
        try:
            if not obj.get("id"):
                logger.warning("Skipping Stripe dispute without an id")
                continue
            disputes.append(RemoteDispute.from_stripe(obj))
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed Stripe dispute: {type(e).__name__}: {e}")
    return disputes


def _same(stored, incoming) -> bool:
    # SQLite returns naive datetimes for timezone-aware columns
    if isinstance(stored, datetime) and isinstance(incoming, datetime):
        if stored.tzinfo is None:
            stored = stored.replace(tzinfo=timezone.utc)
        return stored == incoming
    return stored == incoming


def upsert_dispute(db: Session, user: User, record: Dict[str, Any]) -> Dispute:
    """Insert or update one dispute keyed by its Stripe id"""
    dispute = db.query(Dispute).filter_by(stripe_dispute_id=record["stripe_dispute_id"]).first()
    if dispute is None:
        dispute = Dispute(user_id=user.id, **record)
        db.add(dispute)
    elif dispute.user_id != user.id:
        raise ForeignDispute(record["stripe_dispute_id"])
    else:
        changed = [f for f in MIRRORED_FIELDS if not _same(getattr(dispute, f), record[f])]
        for name in changed:
            setattr(dispute, name, record[name])
        if changed:
            dispute.updated_at = record["updated_at"]
        dispute.synced_at = record["synced_at"]
    db.flush()
    return dispute


def sync_disputes(db: Session, user: User) -> SyncResult:
    account = oauth.get_account(db, user)
    if account is None:
        raise NotConnected()

    try:
        access_token = oauth.usable_access_token(db, account)
        remote = fetch_remote_disputes(access_token)
    except UpstreamFailure:
        raise
    except Exception as e:
        logger.error(f"Error syncing disputes for {account.stripe_account_id}: {type(e).__name__}: {e}")
        raise UpstreamFailure("Failed to sync disputes")

    synced_at = datetime.now(timezone.utc)
    records = []
    for item in remote:
        record = item.as_record(account.stripe_account_id, synced_at)
        records.append(record)
        savepoint = db.begin_nested()
        try:
            upsert_dispute(db, user, record)
            savepoint.commit()
        except ForeignDispute:
            savepoint.rollback()
            logger.warning(f"Skipping dispute {item.stripe_dispute_id}: owned by another user")
        except SQLAlchemyError as e:
            savepoint.rollback()
            logger.error(f"Error upserting dispute {item.stripe_dispute_id}: {e}")

    account.last_synced_at = synced_at
    db.commit()

    logger.info(f"Synced {len(records)} disputes for user {user.id}")
    return SyncResult(count=len(records), disputes=records)
