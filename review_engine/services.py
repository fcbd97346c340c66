"""
Service container.

Builds the collaborators from Settings once per application. The core
modules receive everything through their constructors.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from .config import Settings
from .external_client import ExternalProjectClient
from .external_sync import ExternalSyncAdapter
from .notification_engine import Notifier, build_notification_engine
from .reconciliation import ReconciliationJob, ReconciliationScheduler
from .review_store import ReviewRepository
from .sla_calculator import load_sla_rules
from .workflow import ReviewWorkflow

logger = logging.getLogger("review_services")


@dataclass
class ReviewServices:
    settings: Settings
    repository: ReviewRepository
    adapter: ExternalSyncAdapter
    notifier: Notifier
    workflow: ReviewWorkflow
    reconciliation: ReconciliationJob
    scheduler: Optional[ReconciliationScheduler] = None


def build_services(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    notifier: Optional[Notifier] = None,
) -> ReviewServices:
    """Wire every collaborator from settings."""
    if not settings.external_api_token:
        logger.warning("EXTERNAL_API_TOKEN not set; external calls will be unauthenticated")
    if not settings.external_status_field_id:
        logger.warning("EXTERNAL_STATUS_FIELD_ID not set; status field sync will fail")

    repository = ReviewRepository(settings.data_dir)
    client = ExternalProjectClient(
        base_url=settings.external_api_base_url,
        api_token=settings.external_api_token,
        timeout=settings.external_timeout_seconds,
        transport=transport,
    )
    adapter = ExternalSyncAdapter(client, settings.external_status_field_id)
    if notifier is None:
        notifier = build_notification_engine(
            log_dir=settings.notification_log_dir,
            slack_webhook_url=settings.slack_webhook_url,
        )

    workflow = ReviewWorkflow(
        repository=repository,
        adapter=adapter,
        notifier=notifier,
        sla_rules=load_sla_rules(settings.sla_rules_file),
        sync_timeout=settings.external_timeout_seconds,
        app_base_url=settings.app_base_url,
    )
    reconciliation = ReconciliationJob(
        repository=repository,
        adapter=adapter,
        notifier=notifier,
        max_concurrency=settings.reconcile_max_concurrency,
        call_timeout=settings.external_timeout_seconds,
        app_base_url=settings.app_base_url,
        external_app_url=settings.external_app_url,
    )
    scheduler = None
    if settings.reconcile_interval_seconds > 0:
        scheduler = ReconciliationScheduler(reconciliation, settings.reconcile_interval_seconds)

    return ReviewServices(
        settings=settings,
        repository=repository,
        adapter=adapter,
        notifier=notifier,
        workflow=workflow,
        reconciliation=reconciliation,
        scheduler=scheduler,
    )
