"""Progression engine for the property platform."""
