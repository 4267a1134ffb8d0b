"""KiddoQuest web application package."""
from __future__ import annotations

from .application import create_app, error_status

__all__ = ["create_app", "error_status"]
