"""
pairstream - live P&L relay for paired perp positions.

Exports the global settings instance for easy import across the project:
  from pairstream import settings
"""

from .config import settings

__version__ = "0.3.0"

__all__ = ["settings", "__version__"]
