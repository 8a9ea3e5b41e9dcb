import uuid, json
from sqlalchemy.orm import Session
from app.models.audit_log import AuditLog

def log_audit(db: Session, actor: str, action: str, booking_id: str, details: dict | None = None):
    """Stage an audit row; the caller's commit makes it durable together with the change it describes."""
    db.add(AuditLog(
        id=str(uuid.uuid4()),
        actor=actor or "unknown",
        action=action,
        booking_id=booking_id,
        details_json=json.dumps(details or {}, ensure_ascii=False, default=str),
    ))

def booking_audit_trail(db: Session, booking_id: str) -> list[dict]:
    rows = db.query(AuditLog).filter(AuditLog.booking_id == booking_id).order_by(AuditLog.created_at.asc()).all()
    return [{
        "actor": r.actor,
        "action": r.action,
        "details": json.loads(r.details_json or "{}"),
        "createdAt": r.created_at.isoformat() if r.created_at else None,
    } for r in rows]
