"""LLM library internals."""
