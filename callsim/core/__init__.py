"""Core persistence layer: models, schemas, and session management."""
