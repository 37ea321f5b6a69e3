"""
Record linking - directed "this record triggers a record in that process" edges.

A link is created pending (``target_record_id IS NULL``) when the source
record is committed with a linked process selected.  It is resolved once the
follow-on record exists.  Pending links are never expired; they stay listed
by ``list_pending_links`` until someone creates the follow-on record.
"""

import logging
from datetime import datetime, timezone

from qpd.core.exceptions import ConflictError, NotFoundError, ValidationError
from qpd.models import db
from qpd.models.process import Process
from qpd.models.record import ProcessRecord, RecordLink

logger = logging.getLogger(__name__)


def get_link_or_404(link_id: int) -> RecordLink:
    link = db.session.get(RecordLink, link_id)
    if not link:
        raise NotFoundError(resource="RecordLink", resource_id=link_id)
    return link


def build_pending_link(source_record_id: int, target_process_id: int) -> RecordLink:
    """Validate and return an unsaved pending link."""
    if db.session.get(ProcessRecord, source_record_id) is None:
        raise NotFoundError(resource="ProcessRecord", resource_id=source_record_id)
    target = db.session.get(Process, target_process_id)
    if target is None:
        raise NotFoundError(resource="Process", resource_id=target_process_id)
    if not target.is_active:
        raise ValidationError(
            "Cannot link to an inactive process",
            details={"target_process_id": target_process_id},
        )
    return RecordLink(source_record_id=source_record_id, target_process_id=target_process_id)


def create_pending_link(source_record_id: int, target_process_id: int) -> dict:
    """Insert a RecordLink whose target record is not yet known."""
    link = build_pending_link(source_record_id, target_process_id)
    db.session.add(link)
    db.session.commit()
    logger.info(
        "RecordLink created id=%s source=%s target_process=%s",
        link.id, source_record_id, target_process_id,
        extra={"record_id": source_record_id},
    )
    return link.to_dict()


def stage_resolution(link: RecordLink, target_record_id: int) -> RecordLink:
    """Check and apply a resolution to ``link`` without committing.

    Raises:
        ConflictError: the link is already resolved.
        NotFoundError: the target record does not exist.
        ValidationError: the target record belongs to another process.
    """
    if not link.is_pending:
        raise ConflictError(
            resource="RecordLink", field="target_record_id", value=link.target_record_id,
            message=f"RecordLink {link.id} is already resolved",
        )
    target = db.session.get(ProcessRecord, target_record_id)
    if target is None:
        raise NotFoundError(resource="ProcessRecord", resource_id=target_record_id)
    if target.process_id != link.target_process_id:
        raise ValidationError(
            "Target record does not belong to the link's target process",
            details={
                "target_record_id": target_record_id,
                "target_process_id": link.target_process_id,
            },
        )
    link.target_record_id = target.id
    link.resolved_at = datetime.now(timezone.utc)
    return link


def resolve_link(link_id: int, target_record_id: int) -> dict:
    """Back-fill the target record of a pending link."""
    link = stage_resolution(get_link_or_404(link_id), target_record_id)
    db.session.commit()
    logger.info("RecordLink resolved id=%s target_record=%s", link.id, target_record_id,
                extra={"record_id": target_record_id})
    return link.to_dict()


def _linked_record_summary(record: ProcessRecord | None) -> dict | None:
    if record is None:
        return None
    return {
        "id": record.id,
        "record_title": record.record_title,
        "record_identifier": record.record_identifier,
        "current_status": record.current_status,
        "process_id": record.process_id,
        "process_name": record.process.name if record.process else None,
    }


def _enrich(link: RecordLink, direction: str) -> dict:
    d = link.to_dict()
    d["direction"] = direction
    if direction == "outgoing":
        d["linked_process_name"] = link.target_process.name if link.target_process else None
        d["linked_record"] = _linked_record_summary(link.target_record)
    else:
        source = link.source_record
        d["linked_process_name"] = source.process.name if source and source.process else None
        d["linked_record"] = _linked_record_summary(source)
    return d


def list_outgoing(record_id: int) -> list[dict]:
    """Links where the record is the source, oldest first."""
    if db.session.get(ProcessRecord, record_id) is None:
        raise NotFoundError(resource="ProcessRecord", resource_id=record_id)
    links = (
        RecordLink.query
        .filter_by(source_record_id=record_id)
        .order_by(RecordLink.created_at, RecordLink.id)
        .all()
    )
    return [_enrich(link, "outgoing") for link in links]


def list_incoming(record_id: int) -> list[dict]:
    """Resolved links whose target is the record, oldest first."""
    if db.session.get(ProcessRecord, record_id) is None:
        raise NotFoundError(resource="ProcessRecord", resource_id=record_id)
    links = (
        RecordLink.query
        .filter_by(target_record_id=record_id)
        .order_by(RecordLink.created_at, RecordLink.id)
        .all()
    )
    return [_enrich(link, "incoming") for link in links]


def list_pending_links(process_id: int | None = None) -> list[dict]:
    """Unresolved links, optionally only those targeting ``process_id``."""
    q = RecordLink.query.filter(RecordLink.target_record_id.is_(None))
    if process_id is not None:
        q = q.filter(RecordLink.target_process_id == process_id)
    links = q.order_by(RecordLink.created_at, RecordLink.id).all()
    items = []
    for link in links:
        d = _enrich(link, "outgoing")
        d["source_record"] = _linked_record_summary(link.source_record)
        items.append(d)
    return items
