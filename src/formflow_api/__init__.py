"""FastAPI adapter for the formflow runtime."""

from .app import app, create_app, main
from .container import EngineContainer, build_engine, load_config

__all__ = ["app", "create_app", "main", "EngineContainer", "build_engine", "load_config"]
