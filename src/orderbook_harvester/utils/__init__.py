"""Utility helpers shared across the harvester."""
