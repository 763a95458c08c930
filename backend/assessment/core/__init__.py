"""
Core engine components and shared utilities.

Note: the engine modules are not imported at package level to keep import
order simple. Import them directly: from assessment.core.attempt import ...
"""
from .config import settings

__all__ = ["settings"]
