"""Hash-chain verification for audit trails."""

from itertools import groupby
from typing import Iterable, List

from phi_guard.governance.audit_models import GENESIS_HASH, AuditRecord, compute_record_hash
from phi_guard.governance.exceptions import ChainIntegrityError


def verify_chain(records: Iterable[AuditRecord]) -> int:
    """
    Recompute every per-resource chain. Records may span resources and tiers; each
    resource's records must be contiguous in sequence. A chain whose oldest records were
    purged by retention starts from the surviving record's previous_hash.
    Returns the number of records verified; raises ChainIntegrityError on the first break.
    """
    ordered: List[AuditRecord] = sorted(
        records, key=lambda r: (r.resource_type, r.resource_id, r.sequence)
    )
    verified = 0
    for _, chain in groupby(ordered, key=lambda r: (r.resource_type, r.resource_id)):
        previous = None
        for record in chain:
            if previous is None:
                if record.sequence == 1 and record.previous_hash != GENESIS_HASH:
                    raise ChainIntegrityError(
                        f"{record.ref} sequence 1 does not start from genesis"
                    )
            else:
                if record.sequence != previous.sequence + 1:
                    raise ChainIntegrityError(
                        f"{record.ref} gap between sequence {previous.sequence} and {record.sequence}"
                    )
                if record.previous_hash != previous.record_hash:
                    raise ChainIntegrityError(
                        f"{record.ref} broken link at sequence {record.sequence}"
                    )
            expected = compute_record_hash(record.hashed_fields(), record.previous_hash)
            if record.record_hash != expected:
                raise ChainIntegrityError(
                    f"{record.ref} record_hash mismatch at sequence {record.sequence}"
                )
            previous = record
            verified += 1
    return verified
