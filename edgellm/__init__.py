"""
EdgeLLM application package.

This package contains the model registry client, the download manager, the
single-session llama.cpp adapter and the streaming chat processor used by the
on-device chat app.
"""

from .config import AppConfig
from .service import EdgeLLMService

__all__ = ["AppConfig", "EdgeLLMService"]
