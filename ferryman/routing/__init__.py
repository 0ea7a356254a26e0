"""Destination resolution for repositories and organizations."""

from __future__ import annotations

from .resolver import resolve_destination, resolve_organization_destination

__all__ = ["resolve_destination", "resolve_organization_destination"]
