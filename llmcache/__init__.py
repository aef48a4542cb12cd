"""Tiered LLM response and embedding cache service."""
