"""
Ledger persistence: BatchRecord and BatchEventRecord.

Backs ``SQLLedgerStore``.  One row per batch key plus one row per appended
event.  Rows are insert-only except for the batch header's cache columns
(last_updated, status_cache, version), which are rewritten on every append.

``status_cache`` is a cache for reporting queries only.  Reads always
re-derive the status from the event rows.

The UNIQUE (batch_key, sequence) constraint is what makes the optimistic
version check safe across processes: two writers racing for the same
sequence number cannot both commit.
"""

from datetime import datetime, timezone

from herbtrace.models import db


def _utcnow():
    return datetime.now(timezone.utc)


class BatchRecord(db.Model):
    """Header row for one ledger key."""

    __tablename__ = "ledger_batches"

    key = db.Column(db.String(128), primary_key=True)
    qr_code = db.Column(
        db.String(128),
        nullable=True,
        index=True,
        comment="External batch id when the key is an alias; NULL means key itself",
    )
    version = db.Column(db.Integer, nullable=False, default=0)
    last_updated = db.Column(db.String(64), nullable=True)
    status_cache = db.Column(db.String(20), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    events = db.relationship(
        "BatchEventRecord",
        back_populates="batch",
        order_by="BatchEventRecord.sequence",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<BatchRecord {self.key} v{self.version}>"


class BatchEventRecord(db.Model):
    """One appended event.  Never updated or deleted."""

    __tablename__ = "ledger_events"
    __table_args__ = (
        db.UniqueConstraint("batch_key", "sequence", name="uq_ledger_event_seq"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    batch_key = db.Column(
        db.String(128),
        db.ForeignKey("ledger_batches.key", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence = db.Column(db.Integer, nullable=False, comment="1-based append position")
    event_id = db.Column(db.String(128), nullable=False)
    event_type = db.Column(db.String(64), nullable=False)
    payload = db.Column(db.Text, nullable=False, comment="JSON-encoded Event.to_dict()")
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    batch = db.relationship("BatchRecord", back_populates="events")

    def __repr__(self):
        return f"<BatchEventRecord {self.batch_key}#{self.sequence} {self.event_type}>"
