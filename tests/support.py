"""Test support: settings, seed data and catalog helpers for a fully wired in-memory engine."""

from datetime import datetime, timedelta, timezone

from phi_guard.api.dependencies import Container
from phi_guard.config.settings import AppSettings
from phi_guard.domain.models.access import Permission
from phi_guard.domain.models.resource import ResourceMetadata, ResourceRef
from phi_guard.domain.models.retention import DispositionAction
from phi_guard.governance.audit_repository import AuditQuery

TEST_KEY = "test-secret-key-at-least-32-chars-long-for-aes"

PATIENT_FIELDS = {"name", "dob", "diagnosis", "insurance"}

POLICY_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)


def make_settings(**overrides) -> AppSettings:
    values = dict(
        environment="test",
        encryption_key=TEST_KEY,
        audit_write_attempts=3,
        audit_backoff_seconds=0.0,
        audit_backoff_max_seconds=0.0,
        policy_cache_ttl_seconds=5.0,
    )
    values.update(overrides)
    return AppSettings(**values)


def seed(container: Container) -> None:
    """Roles, principals and retention classes used across the suite."""
    store = container.policy_store
    store.publish_role(
        "clinician",
        {Permission.PHI_READ, Permission.PHI_WRITE, Permission.PHI_CREATE},
        {"patient": {"name", "dob", "diagnosis"}},
    )
    store.publish_role("billing", {Permission.PHI_READ}, {"patient": {"name", "insurance"}})
    store.publish_role(
        "records-admin",
        {Permission.PHI_DELETE, Permission.PHI_ARCHIVE, Permission.PHI_EXPORT},
        {"patient": PATIENT_FIELDS},
    )
    store.publish_role("auditor", {Permission.AUDIT_VIEW})
    store.publish_role(
        "compliance-officer",
        {
            Permission.LEGAL_HOLD_MANAGE,
            Permission.PRINCIPAL_MANAGE,
            Permission.POLICY_MANAGE,
            Permission.AUDIT_VIEW,
        },
    )
    store.publish_role("patient-self", {Permission.SUBJECT_READ})

    store.publish_retention_policy("audit-record", 7, DispositionAction.DELETE, effective_from=POLICY_EPOCH)
    store.publish_retention_policy("medical-record", 6, DispositionAction.DELETE, effective_from=POLICY_EPOCH)
    store.publish_retention_policy("imaging", 6, DispositionAction.ARCHIVE, effective_from=POLICY_EPOCH)

    directory = container.directory
    directory.provision("dr-1", "dr.one", {"clinician"})
    directory.provision("bill-1", "billing.one", {"billing"})
    directory.provision("rec-1", "records.one", {"records-admin"})
    directory.provision("aud-1", "auditor.one", {"auditor"})
    directory.provision("co-1", "compliance.one", {"compliance-officer"})
    directory.provision("pat-1", "patient.one", {"patient-self"})


async def add_resource(
    container: Container,
    resource_id: str,
    *,
    resource_type: str = "patient",
    retention_class: str = "medical-record",
    age_days: int = 30,
    subject_id: str | None = None,
    supports: ResourceRef | None = None,
    content: dict | None = None,
) -> ResourceMetadata:
    """Catalogue a resource directly (bypassing mediation) with a back-dated creation time."""
    ref = ResourceRef(resource_type, resource_id)
    metadata = ResourceMetadata(
        ref=ref,
        created_at=datetime.now(timezone.utc) - timedelta(days=age_days),
        retention_class=retention_class,
        subject_id=subject_id,
        supports=supports,
    )
    await container.catalog.add(metadata)
    container.resource_store.put(
        ref.key,
        dict(content or {"name": "Jane Roe", "dob": "1980-02-29", "diagnosis": "J45", "insurance": "INS-9"}),
    )
    return metadata


async def records_for(container: Container, ref: ResourceRef):
    page = await container.log_store.fetch_page(AuditQuery(resource=ref), None, 10_000)
    return page.records
