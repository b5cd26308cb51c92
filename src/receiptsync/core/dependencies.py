"""Component construction and FastAPI dependency injection."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request

from receiptsync.core.config import Settings
from receiptsync.services.analytics import SpendingAnalytics
from receiptsync.services.api_client import ReceiptAPIClient
from receiptsync.services.field_extractor import FieldExtractor
from receiptsync.services.orchestrator import SyncOrchestrator
from receiptsync.services.reconciliation import ReconciliationEngine
from receiptsync.services.repository import ReceiptRepository
from receiptsync.services.text_acquirer import TextAcquirer


@dataclass
class Components:
    """Everything one running instance needs, built once."""

    settings: Settings
    repository: ReceiptRepository
    orchestrator: SyncOrchestrator
    analytics: SpendingAnalytics


def build_components(
    settings: Settings,
    *,
    api: ReceiptAPIClient | None = None,
    acquirer: TextAcquirer | None = None,
) -> Components:
    """Wire the pipeline from settings.

    ``api`` and ``acquirer`` can be supplied to swap in test doubles.
    """
    repository = ReceiptRepository(settings.database_path)
    orchestrator = SyncOrchestrator(
        acquirer=acquirer or TextAcquirer(settings),
        extractor=FieldExtractor(),
        repository=repository,
        engine=ReconciliationEngine(repository, settings.conflict_threshold),
        api=api
        or ReceiptAPIClient(
            base_url=settings.api_base_url,
            session_token=settings.api_session_token or None,
            timeout=settings.api_timeout,
        ),
        retain_raw_documents=settings.retain_raw_documents,
    )
    return Components(
        settings=settings,
        repository=repository,
        orchestrator=orchestrator,
        analytics=SpendingAnalytics(repository),
    )


def get_components(request: Request) -> Components:
    """Components attached to the app during startup."""
    components: Components | None = getattr(request.app.state, "components", None)
    if components is None:
        msg = "Application components not initialized"
        raise RuntimeError(msg)
    return components


def get_app_settings(
    components: Annotated[Components, Depends(get_components)],
) -> Settings:
    """Get the settings the app was built with."""
    return components.settings


def get_repository(
    components: Annotated[Components, Depends(get_components)],
) -> ReceiptRepository:
    """Get the receipt repository."""
    return components.repository


def get_orchestrator(
    components: Annotated[Components, Depends(get_components)],
) -> SyncOrchestrator:
    """Get the sync orchestrator."""
    return components.orchestrator


def get_analytics(
    components: Annotated[Components, Depends(get_components)],
) -> SpendingAnalytics:
    """Get the analytics service."""
    return components.analytics


# Type aliases for dependency injection
SettingsDep = Annotated[Settings, Depends(get_app_settings)]
RepositoryDep = Annotated[ReceiptRepository, Depends(get_repository)]
OrchestratorDep = Annotated[SyncOrchestrator, Depends(get_orchestrator)]
AnalyticsDep = Annotated[SpendingAnalytics, Depends(get_analytics)]
