"""Shared response and persistence helpers for blueprints."""
