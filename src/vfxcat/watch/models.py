"""Watch status models."""

from __future__ import annotations

from pydantic import BaseModel


class WatchStatus(BaseModel):
    """Watch state reported for one project."""

    project_id: str
    is_watching: bool
    path: str


__all__ = ["WatchStatus"]
