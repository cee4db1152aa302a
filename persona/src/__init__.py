"""Persona chat internals."""
