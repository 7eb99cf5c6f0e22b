"""Health check module."""

from cursos.health.router import router


__all__ = ["router"]
