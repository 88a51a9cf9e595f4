"""
Shared API dependencies
"""
from docintake.services.processing_orchestrator import ProcessingOrchestrator, get_orchestrator


def get_processing_orchestrator() -> ProcessingOrchestrator:
    """Orchestrator used by the document routes. Tests override this dependency."""
    return get_orchestrator()
