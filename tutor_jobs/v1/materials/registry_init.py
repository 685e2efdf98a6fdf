"""Initialize material extractors in the MaterialExtractorRegistry."""

from tutor_jobs.config.settings import Settings, settings as default_settings
from tutor_jobs.v1.core.registries import material_extractor_registry
from tutor_jobs.v1.materials.extractors import OpenAIMaterialExtractor, StubMaterialExtractor


def init_extractor_registry(settings: Settings | None = None):
    """Register all material extractors with the MaterialExtractorRegistry."""
    settings = settings or default_settings
    material_extractor_registry.register("stub", StubMaterialExtractor())
    material_extractor_registry.register("openai", OpenAIMaterialExtractor(settings))
