"""External task topics of the customer onboarding process."""

from __future__ import annotations

VALIDATE_DATA = "validateData"
CREATE_ACCOUNT = "createAccount"
HANDLE_ERROR = "handleError"

ALL_TOPICS: tuple[str, ...] = (VALIDATE_DATA, CREATE_ACCOUNT, HANDLE_ERROR)

# Human review is a user task, not an external task.
REVIEW_DOCUMENTS = "reviewDocuments"
