# phi_guard/infrastructure/database/models.py

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Integer,
    LargeBinary,
    String,
    UniqueConstraint,
)

from phi_guard.infrastructure.database.session import Base

# SQLite only autoincrements INTEGER PRIMARY KEY.
RecordId = BigInteger().with_variant(Integer, "sqlite")


class AuditRecordRow(Base):
    """
    One audit record in either tier. Appends insert and never update a committed row.
    Tier migration is the one rewrite: the detail columns are replaced by a sealed copy
    of the same record, and the lookup columns stay in plaintext. The row, its record_id
    and its idempotency key survive migration; only the retention purge removes them.
    """

    __tablename__ = "audit_records"
    __table_args__ = (
        UniqueConstraint("resource_type", "resource_id", "sequence", name="uq_audit_resource_sequence"),
        UniqueConstraint("idempotency_key", name="uq_audit_idempotency_key"),
        # Never hand out a purged record's id again.
        {"sqlite_autoincrement": True},
    )

    record_id = Column(RecordId, primary_key=True, autoincrement=True)
    tier = Column(String(8), nullable=False, default="hot", index=True)

    # Lookup columns, plaintext in both tiers.
    sequence = Column(Integer, nullable=False)
    principal_id = Column(String(128), nullable=False, index=True)
    resource_type = Column(String(128), nullable=False)
    resource_id = Column(String(128), nullable=False)
    timestamp_utc = Column(DateTime(timezone=True), nullable=False, index=True)
    correlation_id = Column(String(128), nullable=False, index=True)
    idempotency_key = Column(String(64), nullable=False)

    # Detail columns, cleared once sealed into sealed_payload.
    role = Column(String(512), nullable=True)
    action = Column(String(32), nullable=True)
    outcome = Column(String(16), nullable=True)
    failure_code = Column(String(32), nullable=True)
    channel = Column(String(16), nullable=True)
    policy_version = Column(Integer, nullable=True)
    justification = Column(String(32), nullable=True)
    previous_hash = Column(String(64), nullable=True)
    record_hash = Column(String(64), nullable=True)
    sealed_payload = Column(LargeBinary, nullable=True)


class ChainHeadRow(Base):
    """Last sequence and hash per resource. Row lock scopes append contention to one resource."""

    __tablename__ = "audit_chain_heads"

    resource_type = Column(String(128), primary_key=True)
    resource_id = Column(String(128), primary_key=True)
    last_sequence = Column(Integer, nullable=False, default=0)
    last_hash = Column(String(64), nullable=False)
