"""Camunda external task workers for customer onboarding.

- lease-aware polling scheduler with one thread pool per topic
- validateData, createAccount and handleError task handlers
- retry budgets, business errors and incidents reported to the engine
- onboarding workflow state machine, local engine and REST API
"""

__version__ = "0.1.0"

from camunda_onboarding.worker.config import WorkerSettings

__all__ = ["__version__", "WorkerSettings"]
