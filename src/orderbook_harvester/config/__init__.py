"""Configuration loading for the harvester service."""
