"""
Alert engine.

Evaluation derives a set of conditions from checklist items and documents and
reconciles them with stored alerts:

- a holding condition upserts the one open alert for (client, type, subject),
  updating it in place when its fingerprint (condition_key) changes;
- a resolved alert with the same fingerprint suppresses re-creation, so only
  a new occurrence (reopened item, new due date, another failed run) raises
  a fresh alert;
- an open alert whose condition no longer holds is auto-resolved.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import case, select
from sqlalchemy.ext.asyncio import AsyncSession

from docintake.core.config import settings
from docintake.core.exceptions import ConflictError, NotFoundError, ValidationError
from docintake.models.alert import Alert
from docintake.models.checklist_item import ChecklistItem
from docintake.models.document import Document
from docintake.models.enums import (
    AlertSeverity,
    AlertStatus,
    AlertType,
    ChecklistPriority,
    ProcessingStatus,
)
from docintake.utils.clock import utcnow

logger = logging.getLogger(__name__)

SYSTEM_USER = "system"
AUTO_RESOLVE_NOTE = "Auto-resolved: condition no longer holds"

SEVERITY_ORDER = {
    AlertSeverity.CRITICAL: 0,
    AlertSeverity.ERROR: 1,
    AlertSeverity.WARNING: 2,
    AlertSeverity.INFO: 3,
}

OPEN_STATUSES = (AlertStatus.ACTIVE, AlertStatus.ACKNOWLEDGED)


@dataclass
class AlertCondition:
    """One evaluated (type, subject) pair; holds=False means any open alert should resolve."""

    type: AlertType
    subject_type: str
    subject_id: str
    holds: bool
    condition_key: str = ""
    severity: AlertSeverity = AlertSeverity.INFO
    title: str = ""
    message: str = ""
    action_required: Optional[str] = None
    deadline: Optional[datetime] = None
    details: Optional[Dict[str, Any]] = None


@dataclass
class EvaluationSummary:
    created: int = 0
    updated: int = 0
    resolved: int = 0
    suppressed: int = 0
    alerts: List[Alert] = field(default_factory=list)


# ============================================================================
# CONDITIONS
# ============================================================================

def item_conditions(item: ChecklistItem, now: datetime, horizon_days: int) -> List[AlertCondition]:
    """missing_document / deadline_approaching / client_action_required for one checklist item."""
    open_required = item.is_required and not item.is_completed
    horizon = now + timedelta(days=horizon_days)
    under_deadline = open_required and item.due_date is not None and item.due_date <= horizon
    overdue = item.is_overdue(now)
    label = item.description or item.document_type

    missing = AlertCondition(AlertType.MISSING_DOCUMENT, "checklist_item", item.id, open_required and not under_deadline)
    if missing.holds:
        missing.condition_key = f"missing:r{item.reopen_count}"
        missing.severity = AlertSeverity.WARNING if item.priority == ChecklistPriority.HIGH else AlertSeverity.INFO
        missing.title = f"Missing document: {item.document_type}"
        missing.message = f"Required document '{label}' has not been received."
        missing.action_required = f"Request {item.document_type} from the client"
        missing.deadline = item.due_date

    deadline = AlertCondition(AlertType.DEADLINE_APPROACHING, "checklist_item", item.id, under_deadline)
    if deadline.holds:
        state = "overdue" if overdue else "approaching"
        deadline.condition_key = f"{state}:{item.due_date.date().isoformat()}:r{item.reopen_count}"
        deadline.severity = AlertSeverity.CRITICAL if overdue else AlertSeverity.WARNING
        if overdue:
            deadline.title = f"Overdue: {item.document_type}"
            deadline.message = f"'{label}' was due {item.due_date.date().isoformat()} and is still missing."
        else:
            days = max(0, (item.due_date - now).days)
            deadline.title = f"Due soon: {item.document_type}"
            deadline.message = f"'{label}' is due in {days} day(s) ({item.due_date.date().isoformat()})."
        deadline.action_required = f"Follow up with the client for {item.document_type}"
        deadline.deadline = item.due_date
        deadline.details = {"overdue": overdue}

    waiting = not item.is_completed and (item.requires_client_action or item.reminder_count > 0)
    action = AlertCondition(AlertType.CLIENT_ACTION_REQUIRED, "checklist_item", item.id, waiting)
    if action.holds:
        action.condition_key = f"action:r{item.reopen_count}:n{item.reminder_count}"
        action.severity = AlertSeverity.WARNING if overdue else AlertSeverity.INFO
        action.title = f"Client action required: {item.document_type}"
        action.message = item.instructions or f"The client needs to provide or sign '{label}'."
        action.action_required = "Wait for the client or send another reminder"
        action.deadline = item.due_date
        action.details = {"reminder_count": item.reminder_count, "last_reminder_at": _iso(item.last_reminder_at)}

    return [missing, deadline, action]


def document_conditions(
    document: Document,
    now: datetime,
    review_threshold: Optional[float],
    critical_attempts: int,
    stale_after_seconds: int,
) -> List[AlertCondition]:
    """system_error / quality_issue / review_needed for one document.

    A document with a live run yields no conditions, leaving its alerts as they are.
    review_needed is only evaluated when a threshold is given.
    """
    status = document.processing_status
    stuck = document.is_stuck(now, stale_after_seconds)
    if status == ProcessingStatus.PENDING or (status == ProcessingStatus.PROCESSING and not stuck):
        return []

    attempts = document.processing_attempts
    error = AlertCondition(AlertType.SYSTEM_ERROR, "document", document.id, status == ProcessingStatus.FAILED or stuck)
    if stuck:
        error.condition_key = f"stale:a{attempts}"
        error.severity = AlertSeverity.CRITICAL
        error.title = f"Processing stuck: {document.name}"
        error.message = (
            f"Document '{document.name}' has been processing since "
            f"{_iso(document.processing_started_at)} without finishing."
        )
        error.action_required = "Force a reprocess of the document"
    elif error.holds:
        error.condition_key = f"failed:a{attempts}"
        error.severity = AlertSeverity.CRITICAL if attempts >= critical_attempts else AlertSeverity.ERROR
        stage = document.failed_stage.value if document.failed_stage else "unknown"
        error.title = f"Processing failed: {document.name}"
        error.message = f"Stage '{stage}' failed: {document.error_message or 'no error recorded'}"
        error.action_required = "Fix the underlying issue and reprocess the document"
    if error.holds:
        error.details = {"attempts": attempts, "failed_stage": _enum_value(document.failed_stage)}

    conditions = [error]
    if stuck:
        return conditions

    analysis = document.analysis_result or {}
    completed_unreviewed = status == ProcessingStatus.COMPLETED and document.reviewed_at is None
    missing_fields = analysis.get("missing_fields") or []
    quality_issues = analysis.get("quality_issues") or []

    quality = AlertCondition(
        AlertType.QUALITY_ISSUE, "document", document.id,
        completed_unreviewed and bool(missing_fields or quality_issues),
    )
    if quality.holds:
        quality.condition_key = f"incomplete:a{attempts}"
        quality.severity = AlertSeverity.WARNING
        quality.title = f"Incomplete extraction: {document.name}"
        parts = []
        if missing_fields:
            parts.append("missing fields: " + ", ".join(missing_fields))
        if quality_issues:
            parts.append("issues: " + ", ".join(quality_issues))
        quality.message = f"Analysis of '{document.name}' is incomplete ({'; '.join(parts)})."
        quality.action_required = "Check the document and correct or re-upload it"
        quality.details = {"missing_fields": missing_fields, "quality_issues": quality_issues}
    conditions.append(quality)

    if review_threshold is not None:
        confidence = document.analysis_confidence
        review = AlertCondition(
            AlertType.REVIEW_NEEDED, "document", document.id,
            completed_unreviewed and confidence is not None and confidence < review_threshold,
        )
        if review.holds:
            review.condition_key = f"low_confidence:a{attempts}"
            review.severity = AlertSeverity.WARNING
            review.title = f"Review needed: {document.name}"
            review.message = (
                f"Analysis confidence {confidence:.2f} for '{document.name}' "
                f"is below the review threshold {review_threshold:.2f}."
            )
            review.action_required = "Review the extracted fields"
            review.details = {"confidence": confidence, "threshold": review_threshold}
        conditions.append(review)

    return conditions


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _enum_value(value):
    return value.value if value is not None else None


# ============================================================================
# RECONCILIATION
# ============================================================================

async def _open_alert(db: AsyncSession, client_id: str, alert_type: AlertType, subject_id: str) -> Optional[Alert]:
    result = await db.execute(
        select(Alert).where(
            Alert.client_id == client_id,
            Alert.type == alert_type,
            Alert.subject_id == subject_id,
            Alert.status.in_(OPEN_STATUSES),
        )
    )
    return result.scalar_one_or_none()


async def _resolved_same_condition(db: AsyncSession, client_id: str, condition: AlertCondition) -> bool:
    result = await db.execute(
        select(Alert.id).where(
            Alert.client_id == client_id,
            Alert.type == condition.type,
            Alert.subject_id == condition.subject_id,
            Alert.status == AlertStatus.RESOLVED,
            Alert.condition_key == condition.condition_key,
        ).limit(1)
    )
    return result.first() is not None


def _resolve(alert: Alert, note: str, resolved_by: str) -> None:
    alert.status = AlertStatus.RESOLVED
    alert.resolved_at = utcnow()
    alert.resolved_by = resolved_by
    alert.resolution_note = note


async def apply_condition(db: AsyncSession, client_id: str, condition: AlertCondition,
                          summary: Optional[EvaluationSummary] = None) -> Optional[Alert]:
    """Reconcile one condition with stored alerts. Returns the open alert, if any."""
    summary = summary if summary is not None else EvaluationSummary()
    alert = await _open_alert(db, client_id, condition.type, condition.subject_id)

    if not condition.holds:
        if alert is not None:
            _resolve(alert, AUTO_RESOLVE_NOTE, SYSTEM_USER)
            summary.resolved += 1
            logger.info("Auto-resolved %s alert %s for %s", alert.type.value, alert.id, condition.subject_id)
        return None

    if alert is not None:
        if alert.condition_key != condition.condition_key:
            # New occurrence of the same condition: surface it again
            if alert.severity != condition.severity:
                logger.info("Alert %s severity %s -> %s", alert.id, alert.severity.value, condition.severity.value)
            alert.status = AlertStatus.ACTIVE
            alert.acknowledged_at = None
            alert.acknowledged_by = None
            summary.updated += 1
        alert.condition_key = condition.condition_key
        alert.severity = condition.severity
        alert.title = condition.title
        alert.message = condition.message
        alert.action_required = condition.action_required
        alert.deadline = condition.deadline
        alert.details = condition.details
        return alert

    if await _resolved_same_condition(db, client_id, condition):
        summary.suppressed += 1
        return None

    alert = Alert(
        client_id=client_id,
        type=condition.type,
        severity=condition.severity,
        status=AlertStatus.ACTIVE,
        subject_type=condition.subject_type,
        subject_id=condition.subject_id,
        condition_key=condition.condition_key,
        title=condition.title,
        message=condition.message,
        action_required=condition.action_required,
        deadline=condition.deadline,
        details=condition.details,
    )
    db.add(alert)
    await db.flush()
    summary.created += 1
    logger.info("Created %s alert %s (%s) for client %s subject %s",
                condition.type.value, alert.id, condition.severity.value, client_id, condition.subject_id)
    return alert


async def _client_ids(db: AsyncSession) -> List[str]:
    ids = set()
    for column in (ChecklistItem.client_id, Document.client_id, Alert.client_id):
        result = await db.execute(select(column).distinct())
        ids.update(result.scalars().all())
    return sorted(ids)


async def evaluate(
    db: AsyncSession,
    client_id: Optional[str] = None,
    horizon_days: Optional[int] = None,
    review_threshold: Optional[float] = None,
) -> EvaluationSummary:
    """
    Evaluate checklist and document state for one client, or for every client
    when client_id is omitted. Idempotent on unchanged state.
    """
    horizon_days = settings.ALERT_DEADLINE_HORIZON_DAYS if horizon_days is None else horizon_days
    if review_threshold is None:
        review_threshold = settings.ALERT_REVIEW_CONFIDENCE_THRESHOLD

    summary = EvaluationSummary()
    client_ids = [client_id] if client_id is not None else await _client_ids(db)
    now = utcnow()

    for cid in client_ids:
        result = await db.execute(select(ChecklistItem).where(ChecklistItem.client_id == cid))
        for item in result.scalars().all():
            for condition in item_conditions(item, now, horizon_days):
                await apply_condition(db, cid, condition, summary)

        result = await db.execute(select(Document).where(Document.client_id == cid))
        for document in result.scalars().all():
            for condition in document_conditions(
                document, now, review_threshold,
                settings.ALERT_SYSTEM_ERROR_CRITICAL_ATTEMPTS, settings.PROCESSING_STALE_AFTER_SECONDS,
            ):
                await apply_condition(db, cid, condition, summary)

    await db.flush()
    summary.alerts = await get_active_alerts(db, client_id)
    logger.info("Alert evaluation for %s: %d created, %d updated, %d resolved",
                client_id or "all clients", summary.created, summary.updated, summary.resolved)
    return summary


async def evaluate_document(
    db: AsyncSession,
    document_id: str,
    review_threshold: Optional[float] = None,
) -> EvaluationSummary:
    """Document-only pass, run after a processing run reaches a terminal state."""
    if review_threshold is None:
        review_threshold = settings.ALERT_REVIEW_CONFIDENCE_THRESHOLD
    summary = EvaluationSummary()
    result = await db.execute(select(Document).where(Document.id == document_id))
    document = result.scalar_one_or_none()
    if document is None:
        return summary
    for condition in document_conditions(
        document, utcnow(), review_threshold,
        settings.ALERT_SYSTEM_ERROR_CRITICAL_ATTEMPTS, settings.PROCESSING_STALE_AFTER_SECONDS,
    ):
        alert = await apply_condition(db, document.client_id, condition, summary)
        if alert is not None:
            summary.alerts.append(alert)
    await db.flush()
    return summary


async def raise_reminder_alert(db: AsyncSession, item: ChecklistItem, horizon_days: int) -> Optional[Alert]:
    """Upsert the client_action_required alert for an item that was just reminded."""
    for condition in item_conditions(item, utcnow(), horizon_days):
        if condition.type == AlertType.CLIENT_ACTION_REQUIRED:
            return await apply_condition(db, item.client_id, condition)
    return None


# ============================================================================
# LIFECYCLE
# ============================================================================

async def get_alert(db: AsyncSession, alert_id: str) -> Alert:
    result = await db.execute(select(Alert).where(Alert.id == alert_id))
    alert = result.scalar_one_or_none()
    if not alert:
        raise NotFoundError(f"Alert with id {alert_id} not found")
    return alert


async def get_active_alerts(db: AsyncSession, client_id: Optional[str] = None) -> List[Alert]:
    """Open (active or acknowledged) alerts, most severe first, newest first within a severity."""
    severity_rank = case(
        {severity: rank for severity, rank in SEVERITY_ORDER.items()},
        value=Alert.severity,
    )
    query = select(Alert).where(Alert.status.in_(OPEN_STATUSES))
    if client_id is not None:
        query = query.where(Alert.client_id == client_id)
    result = await db.execute(query.order_by(severity_rank, Alert.created_at.desc()))
    return list(result.scalars().all())


async def acknowledge(db: AsyncSession, alert_id: str, user: Optional[str] = None) -> Alert:
    alert = await get_alert(db, alert_id)
    if alert.status == AlertStatus.RESOLVED:
        raise ConflictError(f"Alert {alert_id} is already resolved")
    if alert.status == AlertStatus.ACTIVE:
        alert.status = AlertStatus.ACKNOWLEDGED
        alert.acknowledged_at = utcnow()
        alert.acknowledged_by = user
        await db.flush()
    return alert


async def resolve(db: AsyncSession, alert_id: str, note: str, user: Optional[str] = None) -> Alert:
    """Resolve an alert. A note is required and resolution is terminal."""
    if not note or not note.strip():
        raise ValidationError("A resolution note is required")
    alert = await get_alert(db, alert_id)
    if alert.status == AlertStatus.RESOLVED:
        raise ConflictError(f"Alert {alert_id} is already resolved")
    _resolve(alert, note.strip(), user or SYSTEM_USER)
    await db.flush()
    logger.info("Alert %s resolved by %s", alert_id, alert.resolved_by)
    return alert


async def resolve_for_subject(db: AsyncSession, subject_id: str, note: str, resolved_by: str = SYSTEM_USER) -> int:
    """Resolve every open alert about one subject (a deleted item or document, a reviewed document)."""
    result = await db.execute(
        select(Alert).where(Alert.subject_id == subject_id, Alert.status.in_(OPEN_STATUSES))
    )
    alerts = list(result.scalars().all())
    for alert in alerts:
        _resolve(alert, note, resolved_by)
    await db.flush()
    return len(alerts)
