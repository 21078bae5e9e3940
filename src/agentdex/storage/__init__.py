"""Relational store: models, engine setup and repositories."""

from agentdex.storage.database import create_engine, create_session_maker, init_models

__all__ = ["create_engine", "create_session_maker", "init_models"]
