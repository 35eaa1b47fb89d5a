"""
Celery tasks for audit persistence.
"""
import logging
from celery import shared_task

from apps.core.tasks import LoggedTask

logger = logging.getLogger(__name__)


@shared_task(base=LoggedTask, name='audit.persist_audit_entry', ignore_result=True)
def persist_audit_entry(payload):
    """
    Write one finalized audit entry.

    Storage errors are logged and swallowed: a lost audit write must never
    surface as a failed request or a retry storm.

    Args:
        payload: Dict produced by AuditDraft.to_payload()

    Returns:
        Id of the created entry, or None on failure
    """
    from apps.audit.recorder import write_entry

    try:
        entry = write_entry(payload)
    except Exception:
        logger.error(
            "Failed to persist audit entry",
            extra={
                'action': payload.get('action'),
                'audit_request_id': payload.get('request_id'),
            },
            exc_info=True
        )
        return None

    return str(entry.id)
