"""Initialize question generators in the QuestionGeneratorRegistry."""

from tutor_jobs.config.settings import Settings, settings as default_settings
from tutor_jobs.v1.core.registries import question_generator_registry
from tutor_jobs.v1.gen.generators import OpenAIQuestionGenerator, StubQuestionGenerator


def init_generator_registry(settings: Settings | None = None):
    """Register all question generators with the QuestionGeneratorRegistry."""
    settings = settings or default_settings
    question_generator_registry.register("stub", StubQuestionGenerator())
    question_generator_registry.register("openai", OpenAIQuestionGenerator(settings))
