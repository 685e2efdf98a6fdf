from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from tutor_jobs.config.logging import setup_logging
from tutor_jobs.config.settings import Settings, settings as default_settings
from tutor_jobs.v1.core.exceptions import (
    RequestContextMiddleware,
    TutorJobsException,
    general_exception_handler,
    http_exception_handler,
    tutor_jobs_exception_handler,
)
from tutor_jobs.v1.core.registries import (
    job_registry,
    material_extractor_registry,
    pdf_renderer_registry,
    question_generator_registry,
    vectorizer_registry,
)
from tutor_jobs.v1.gen.registry_init import init_generator_registry
from tutor_jobs.v1.healthz import router as health_router
from tutor_jobs.v1.infra.jobs.registry_init import register_job_handlers
from tutor_jobs.v1.infra.jobs.routes import router as jobs_router
from tutor_jobs.v1.materials.registry_init import init_extractor_registry
from tutor_jobs.v1.pdf.registry_init import init_renderer_registry
from tutor_jobs.v1.search.registry_init import init_vectorizer_registry


def init_registries(settings: Settings) -> None:
    """Register handlers and their collaborators."""
    init_generator_registry(settings)
    init_vectorizer_registry(settings)
    init_extractor_registry(settings)
    init_renderer_registry()
    register_job_handlers(settings)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or default_settings

    # Initialize structured logging
    setup_logging(settings)

    app = FastAPI(
        title=settings.app_name,
        description="Durable job queue and batch reconciliation for AI tutoring work",
        version=settings.version,
        debug=settings.debug,
        # All endpoints live under the /v1/ prefix
        openapi_url="/v1/openapi.json" if settings.debug else None,
        docs_url="/v1/docs" if settings.debug else None,
        redoc_url="/v1/redoc" if settings.debug else None,
    )

    # Add middleware
    app.add_middleware(RequestContextMiddleware)

    # Add CORS middleware for development
    if settings.debug:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    # Add exception handlers
    app.add_exception_handler(TutorJobsException, tutor_jobs_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Include routers with /v1 prefix
    app.include_router(health_router, prefix="/v1", tags=["health"])
    app.include_router(jobs_router, prefix="/v1")

    if not job_registry.is_frozen():
        init_registries(settings)

    # Freeze registries in non-development environments to prevent runtime modifications
    if settings.environment != "development":
        job_registry.freeze()
        question_generator_registry.freeze()
        vectorizer_registry.freeze()
        material_extractor_registry.freeze()
        pdf_renderer_registry.freeze()

    return app


# Create the app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "tutor_jobs.main:app",
        host=default_settings.host,
        port=default_settings.port,
        reload=default_settings.debug,
        workers=1 if default_settings.debug else default_settings.workers,
    )
