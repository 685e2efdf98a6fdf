"""
Initialize vectorizer registry.

Registers all available vectorizer implementations and checks that the
configured provider is among them.
"""

from tutor_jobs.config.settings import Settings, settings as default_settings
from tutor_jobs.v1.core.registries import vectorizer_registry
from tutor_jobs.v1.search.vectorizers import OpenAIVectorizer, StubVectorizer


def init_vectorizer_registry(settings: Settings | None = None):
    """Initialize vectorizer registry with available implementations."""
    settings = settings or default_settings

    vectorizer_registry.register("stub", StubVectorizer())
    vectorizer_registry.register("openai", OpenAIVectorizer(settings))

    try:
        vectorizer_registry.get(settings.embeddings.value)
    except KeyError as e:
        available = vectorizer_registry.list()
        raise RuntimeError(
            f"Configured embeddings provider '{settings.embeddings.value}' not available. "
            f"Available providers: {available}"
        ) from e
