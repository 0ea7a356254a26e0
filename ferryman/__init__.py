"""Mirror orchestration engine keeping GitHub repositories mirrored into Gitea."""

from __future__ import annotations

__version__ = "0.1.0"
