"""HTTP service exposing the language catalog and the build matrix planner."""

from .app import create_app, run_service

__all__ = ["create_app", "run_service"]
