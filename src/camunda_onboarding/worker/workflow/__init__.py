"""Onboarding workflow domain concepts.

This package holds:
- The explicit onboarding state machine (states, triggers, legal transitions)
- An archive for instances that have ended

Transitions are driven only by task outcomes or by the review decision.
"""

__all__: list[str] = []
