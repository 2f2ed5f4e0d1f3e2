"""
Semantic index of chat history.
"""

from .store import VectorStore

__all__ = ["VectorStore"]
