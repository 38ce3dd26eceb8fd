"""
Default job handlers.

The platform's business logic (rate card parsing, ConnexCS calls, invoicing,
mail delivery) lives in the application that embeds the queue and replaces
these handlers. The defaults validate the payload, log what they would do
and honour cancellation, which keeps a fresh deployment's queue draining.
"""

from typing import Any

from switchyard.config.logging import get_logger
from switchyard.core.cancellation import CancellationToken
from switchyard.jobs.payloads import JobType, job_type_label, validate_payload

logger = get_logger(__name__)


class LoggingHandler:
    """
    Handler that validates and logs a job without side effects.

    Payload expected: the job type's payload model (see PAYLOAD_MODELS).
    """

    def __init__(self, job_type: JobType):
        self.job_type = job_type

    async def handle(self, payload: dict[str, Any], token: CancellationToken) -> None:
        token.raise_if_cancelled()
        validated = validate_payload(self.job_type, payload)
        logger.info(
            "No-op job handler ran",
            job_type=self.job_type.value,
            label=job_type_label(self.job_type.value),
            user_id=validated.user_id,
            customer_id=validated.customer_id,
        )


class BatchLoggingHandler(LoggingHandler):
    """
    Default handler for bulk job types.

    Walks the payload's item list one entry at a time, checking the
    cancellation token between items.
    """

    def __init__(self, job_type: JobType, items_field: str):
        super().__init__(job_type)
        self.items_field = items_field

    async def handle(self, payload: dict[str, Any], token: CancellationToken) -> None:
        validated = validate_payload(self.job_type, payload)
        items = getattr(validated, self.items_field)

        processed = 0
        for _ in items:
            token.raise_if_cancelled()
            processed += 1

        logger.info(
            "No-op batch job handler ran",
            job_type=self.job_type.value,
            label=job_type_label(self.job_type.value),
            item_count=processed,
        )


# Bulk job types and the payload field listing their items
BATCH_ITEM_FIELDS: dict[JobType, str] = {
    JobType.DID_BULK_PROVISION: "did_ids",
    JobType.INVOICE_BULK_GENERATE: "customer_ids",
    JobType.EMAIL_BULK_SEND: "recipients",
    JobType.AZ_DESTINATION_IMPORT: "destinations",
}


def default_handler(job_type: JobType) -> LoggingHandler:
    if job_type in BATCH_ITEM_FIELDS:
        return BatchLoggingHandler(job_type, BATCH_ITEM_FIELDS[job_type])
    return LoggingHandler(job_type)
