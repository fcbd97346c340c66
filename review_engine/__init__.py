"""
Review Engine Module

Status workflow and cross-system reconciliation core for the review-approval
tracker. Handles the review approval lifecycle, SLA deadlines, and keeping the
status mirrored inside the external project-tracking system consistent with
the local system of record.

Components (leaves first):
- Status Catalog: closed status enum and the explicit transition table
- SLA Calculator: deadline computation from administrator-managed rules
- Transition Guard: role and precondition checks, no writes
- Status Store: authoritative status write + best-effort history/activity
- External Sync Adapter: vocabulary mapping + idempotent custom field upsert
- Reconciliation Job: bounded fan-out drift detection and repair
- Notification Engine: best-effort delivery to owners and administrators

CONSTRAINTS:
- The local store is the system of record; the external mirror is eventually consistent
- External failures NEVER fail a local transition
- Absence of external information is NEVER treated as drift
- Reconciliation of one review NEVER aborts the others
"""

__version__ = "1.2.0"

SERVICE_NAME = "Review Engine"
SERVICE_DESCRIPTION = "Review Status Workflow & Cross-System Reconciliation"
