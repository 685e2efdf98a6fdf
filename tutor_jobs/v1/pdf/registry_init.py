"""Initialize PDF renderers in the PdfRendererRegistry."""

from tutor_jobs.v1.core.registries import pdf_renderer_registry
from tutor_jobs.v1.pdf.renderer import ReportLabRenderer


def init_renderer_registry():
    """Register all PDF renderers with the PdfRendererRegistry."""
    pdf_renderer_registry.register("reportlab", ReportLabRenderer())
