"""Shared utilities: logging, configuration, prompt templates."""
