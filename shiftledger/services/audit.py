"""
Audit logging service.
Append-only audit log with integrity hashing.
"""
import hashlib
import json
import uuid
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from sqlalchemy.orm import Session

from ..models.models import AuditLog
from ..config import settings


def _integrity_hash(
    entity_type: str,
    entity_id: str,
    action: str,
    actor_id: Optional[str],
    source: Optional[str],
    timestamp_utc: datetime,
    changes_json: Optional[Dict],
    context: Optional[Dict],
    secret: str,
) -> str:
    canonical_data = {
        "entity_type": entity_type,
        "entity_id": str(entity_id),
        "action": action,
        "actor_id": str(actor_id) if actor_id else None,
        "source": source,
        "timestamp_utc": timestamp_utc.isoformat(),
        "changes": changes_json,
        "context": context,
    }

    # Remove None values and sort keys for consistency
    canonical_data = {k: v for k, v in canonical_data.items() if v is not None}
    canonical_json = json.dumps(canonical_data, sort_keys=True, default=str)

    hash_input = f"{canonical_json}:{secret}"
    return hashlib.sha256(hash_input.encode()).hexdigest()


def create_audit_log(
    db: Session,
    entity_type: str,
    entity_id: Any,
    action: str,
    actor_id: Optional[Any] = None,
    source: Optional[str] = None,
    changes_json: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None
) -> AuditLog:
    """
    Append an audit log entry to the current transaction.

    The entry is flushed, not committed: it becomes durable together with
    the change it describes.

    Args:
        db: Database session
        entity_type: Type of entity (timesheet|budget|clock_event)
        entity_id: Entity ID
        action: Action performed (GENERATE|SUBMIT|APPROVE|REJECT|POST_BUDGET|RECONCILE)
        actor_id: Staff/user ID who performed the action
        source: Source of the action (api|system|batch)
        changes_json: Before/after diff
        context: Additional context (staff_id, period, hours, ...)
        integrity_secret: Secret for integrity hash (defaults to AUDIT_SECRET)
    """
    timestamp_utc = datetime.now(timezone.utc).replace(tzinfo=None)
    source = source or "system"
    if integrity_secret is None:
        integrity_secret = settings.audit_secret

    integrity_hash = None
    if integrity_secret:
        integrity_hash = _integrity_hash(
            entity_type, entity_id, action, actor_id, source,
            timestamp_utc, changes_json, context, integrity_secret,
        )

    audit_log = AuditLog(
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        actor_id=actor_id,
        source=source,
        changes_json=changes_json,
        timestamp_utc=timestamp_utc,
        context=context,
        integrity_hash=integrity_hash,
    )

    db.add(audit_log)
    db.flush()
    return audit_log


def verify_audit_log(audit_log: AuditLog, integrity_secret: Optional[str] = None) -> bool:
    """Recompute the integrity hash of a stored entry and compare."""
    if integrity_secret is None:
        integrity_secret = settings.audit_secret
    if not audit_log.integrity_hash or not integrity_secret:
        return False
    expected = _integrity_hash(
        audit_log.entity_type,
        audit_log.entity_id,
        audit_log.action,
        audit_log.actor_id,
        audit_log.source,
        audit_log.timestamp_utc,
        audit_log.changes_json,
        audit_log.context,
        integrity_secret,
    )
    return expected == audit_log.integrity_hash


def get_audit_logs(
    db: Session,
    entity_type: Optional[str] = None,
    entity_id: Optional[uuid.UUID] = None,
    action: Optional[str] = None,
    limit: int = 100,
    offset: int = 0
) -> List[AuditLog]:
    """History of an entity (or of a whole entity type), newest first."""
    query = db.query(AuditLog)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    if action:
        query = query.filter(AuditLog.action == action)
    return (
        query.order_by(AuditLog.timestamp_utc.desc(), AuditLog.action.asc())
        .limit(limit)
        .offset(offset)
        .all()
    )


def compute_diff(before: Dict, after: Dict) -> Dict:
    """
    Compute a diff between two dictionaries.

    Returns:
        Dict with before/after values for changed fields
    """
    diff = {}
    all_keys = set(before.keys()) | set(after.keys())

    for key in all_keys:
        before_val = before.get(key)
        after_val = after.get(key)

        if before_val != after_val:
            diff[key] = {
                "before": before_val,
                "after": after_val,
            }

    return diff
