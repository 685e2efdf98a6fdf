"""
Job registry initialization.

Registers all job handlers with the global job registry.
"""

import logging

from tutor_jobs.config.settings import Settings, settings as default_settings
from tutor_jobs.v1.core.registries import job_registry
from tutor_jobs.v1.infra.jobs.handlers import (
    DailySpacedRepRefreshHandler,
    ExtractMaterialHandler,
    GenerateEmbeddingsHandler,
    GeneratePdfHandler,
    GenerateQuestionsBatchHandler,
    GenerateQuestionsHandler,
    ReconcileStatsHandler,
    RefreshMaterializedViewsHandler,
    RegenVariantHandler,
)
from tutor_jobs.v1.infra.jobs.models import JobType
from tutor_jobs.v1.infra.jobs.reconcile import ProcessBatchResultHandler

logger = logging.getLogger(__name__)


def register_job_handlers(settings: Settings | None = None) -> None:
    """Register all job handlers with the job registry."""
    settings = settings or default_settings

    logger.info("Registering job handlers")

    # Content generation
    job_registry.register(JobType.EXTRACT_MATERIAL.value, ExtractMaterialHandler(settings))
    job_registry.register(JobType.GENERATE_QUESTIONS.value, GenerateQuestionsHandler(settings))
    job_registry.register(
        JobType.GENERATE_QUESTIONS_BATCH.value, GenerateQuestionsBatchHandler(settings)
    )
    job_registry.register(JobType.REGEN_VARIANT.value, RegenVariantHandler(settings))
    job_registry.register(JobType.GENERATE_PDF.value, GeneratePdfHandler(settings))
    job_registry.register(
        JobType.GENERATE_EMBEDDINGS.value, GenerateEmbeddingsHandler(settings)
    )

    # Batch reconciliation
    job_registry.register(
        JobType.PROCESS_BATCH_RESULT.value, ProcessBatchResultHandler(settings)
    )

    # Maintenance
    job_registry.register(
        JobType.DAILY_SPACED_REP_REFRESH.value, DailySpacedRepRefreshHandler(settings)
    )
    job_registry.register(JobType.RECONCILE_STATS.value, ReconcileStatsHandler(settings))
    job_registry.register(
        JobType.REFRESH_MATERIALIZED_VIEWS.value, RefreshMaterializedViewsHandler(settings)
    )

    logger.info(
        "Job handlers registered", extra={"registered_handlers": job_registry.list()}
    )
