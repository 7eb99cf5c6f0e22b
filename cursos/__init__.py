"""Cursos - lesson scheduling, conferencing and notification core."""

__version__ = "0.1.0"
