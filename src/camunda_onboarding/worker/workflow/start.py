"""Starting an onboarding instance: business key and initial variables."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

from camunda_onboarding.worker.engine.base import ProcessGateway

logger = logging.getLogger(__name__)

BUSINESS_KEY_PREFIX = "CUST-"
DEFAULT_DOCUMENT_TYPE = "ID"


@dataclass(frozen=True, slots=True)
class StartedInstance:
    instance_id: str
    business_key: str


def new_business_key() -> str:
    """`CUST-` plus the first 8 hex characters of a random UUID, upper-cased."""

    return BUSINESS_KEY_PREFIX + uuid.uuid4().hex[:8].upper()


def start_onboarding(
    gateway: ProcessGateway,
    *,
    customer_name: str | None,
    email: str | None,
    document_type: str | None = None,
) -> StartedInstance:
    business_key = new_business_key()
    variables: dict[str, object] = {
        "customerName": customer_name,
        "email": email,
        "documentType": document_type if document_type is not None else DEFAULT_DOCUMENT_TYPE,
        "businessKey": business_key,
    }
    logger.info("Starting customer onboarding", extra={"business_key": business_key})
    instance_id = gateway.start_instance(business_key, variables)
    return StartedInstance(instance_id=instance_id, business_key=business_key)
