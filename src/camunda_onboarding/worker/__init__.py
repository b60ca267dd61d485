"""External task worker runtime: engine adapters, task execution and the onboarding workflow."""
