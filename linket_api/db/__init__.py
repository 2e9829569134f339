"""Persistence layer: models, engine, sessions and repositories."""
