"""Entity services over the convergence core, plus the composition root."""

from src.crm.services.container import ServiceContainer, build_services

__all__ = ["ServiceContainer", "build_services"]
