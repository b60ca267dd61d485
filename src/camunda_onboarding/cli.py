"""`python -m camunda_onboarding.cli` entrypoint."""

from __future__ import annotations

from camunda_onboarding.worker.main import main

__all__ = ["main"]


if __name__ == "__main__":
    raise SystemExit(main())
