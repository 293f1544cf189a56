"""Conversational agent with retrieval, tool calling and model fallback."""

from .config import DispatchConfig, IndexConfig, Settings, load_settings

__all__ = ["DispatchConfig", "IndexConfig", "Settings", "load_settings"]
