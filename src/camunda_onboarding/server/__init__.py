"""FastAPI server adapter for camunda-onboarding.

This module exposes a REST API over the process gateway.

Design intent:
- Keep workflow logic in `camunda_onboarding.worker.*`
- Keep server-specific concerns (routing, CORS, status codes) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from camunda_onboarding.server.app import create_app
