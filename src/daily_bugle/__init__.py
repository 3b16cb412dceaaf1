"""Scheduled Ollama-generated news sections published as a static site."""

__all__ = ["config", "models", "generator", "scheduler", "server"]
