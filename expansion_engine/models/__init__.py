"""Pydantic models and frozen dataclasses shared across the engine."""
