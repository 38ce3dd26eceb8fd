"""
Job types and their payload models.

Payloads are stored exactly as submitted (camelCase keys, as produced by the
admin frontend). The models here only validate them at enqueue time.
"""

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class JobType(str, Enum):
    """Every job type the platform dispatches."""

    RATE_CARD_IMPORT = "rate_card_import"
    RATE_CARD_EXPORT = "rate_card_export"
    CONNEXCS_SYNC_CUSTOMER = "connexcs_sync_customer"
    CONNEXCS_SYNC_CARRIER = "connexcs_sync_carrier"
    CONNEXCS_SYNC_ALL = "connexcs_sync_all"
    DID_PROVISION = "did_provision"
    DID_BULK_PROVISION = "did_bulk_provision"
    DID_RELEASE = "did_release"
    INVOICE_GENERATE = "invoice_generate"
    INVOICE_BULK_GENERATE = "invoice_bulk_generate"
    EMAIL_SEND = "email_send"
    EMAIL_BULK_SEND = "email_bulk_send"
    REPORT_GENERATE = "report_generate"
    AI_VOICE_KB_TRAIN = "ai_voice_kb_train"
    AI_VOICE_KB_INDEX = "ai_voice_kb_index"
    AI_VOICE_CAMPAIGN_START = "ai_voice_campaign_start"
    AI_VOICE_CAMPAIGN_CALL = "ai_voice_campaign_call"
    AI_VOICE_AGENT_SYNC = "ai_voice_agent_sync"
    WEBHOOK_DELIVER = "webhook_deliver"
    FX_RATE_UPDATE = "fx_rate_update"
    BILLING_RECONCILE = "billing_reconcile"
    AUDIT_CLEANUP = "audit_cleanup"
    CDR_PROCESS = "cdr_process"
    AZ_DESTINATION_IMPORT = "az_destination_import"
    AZ_DESTINATION_DELETE_ALL = "az_destination_delete_all"
    TRASH_RESTORE = "trash_restore"
    TRASH_PURGE = "trash_purge"


class BasePayload(BaseModel):
    """Fields every payload may carry."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    user_id: str | None = None
    customer_id: str | None = None


class RateCardImportPayload(BasePayload):
    rate_card_id: str
    file_url: str
    options: dict[str, Any] | None = None


class RateCardExportPayload(BasePayload):
    rate_card_id: str
    format: Literal["csv", "xlsx"]


class ConnexCSSyncPayload(BasePayload):
    carrier_id: str | None = None
    direction: Literal["push", "pull", "bidirectional"]


class DIDProvisionPayload(BasePayload):
    did_id: str
    provider_id: str | None = None


class DIDBulkProvisionPayload(BasePayload):
    did_ids: list[str] = Field(..., min_length=1)


class DIDReleasePayload(BasePayload):
    did_id: str


class InvoiceGeneratePayload(BasePayload):
    period: str
    target_customer_id: str | None = None


class InvoiceBulkGeneratePayload(BasePayload):
    period: str
    customer_ids: list[str]


class EmailSendPayload(BasePayload):
    to: str
    subject: str
    template: str
    variables: dict[str, Any] | None = None


class EmailBulkSendPayload(BasePayload):
    recipients: list[str] = Field(..., min_length=1)
    template: str
    variables: dict[str, Any] | None = None


class ReportGeneratePayload(BasePayload):
    report_type: str
    parameters: dict[str, Any] | None = None


class AIVoiceKBTrainPayload(BasePayload):
    knowledge_base_id: str
    agent_id: str


class AIVoiceKBIndexPayload(BasePayload):
    knowledge_base_id: str
    source_id: str
    source_type: Literal["document", "url", "text"]


class AIVoiceCampaignStartPayload(BasePayload):
    campaign_id: str


class AIVoiceCampaignCallPayload(BasePayload):
    campaign_id: str
    contact_id: str
    phone_number: str


class AIVoiceAgentSyncPayload(BasePayload):
    agent_id: str
    direction: Literal["push", "pull"]


class WebhookDeliverPayload(BasePayload):
    webhook_id: str
    url: str
    event_type: str
    event_data: dict[str, Any]


class FXRateUpdatePayload(BasePayload):
    base_currency: str | None = None


class BillingReconcilePayload(BasePayload):
    period: str


class AuditCleanupPayload(BasePayload):
    older_than_days: int = Field(..., ge=1)


class CDRProcessPayload(BasePayload):
    batch_id: str
    record_count: int = Field(..., ge=0)


class AZDestination(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code: str
    destination: str
    region: str | None = None
    billing_increment: str | None = None


class AZDestinationImportPayload(BasePayload):
    mode: Literal["update", "replace"]
    destinations: list[AZDestination]
    total_records: int = Field(..., ge=0)


class AZDestinationDeleteAllPayload(BasePayload):
    total_records: int | None = None


class TrashRestorePayload(BasePayload):
    trash_id: str
    table_name: str
    record_id: str


class TrashPurgePayload(BasePayload):
    purge_type: Literal["expired", "all"]


PAYLOAD_MODELS: dict[JobType, type[BasePayload]] = {
    JobType.RATE_CARD_IMPORT: RateCardImportPayload,
    JobType.RATE_CARD_EXPORT: RateCardExportPayload,
    JobType.CONNEXCS_SYNC_CUSTOMER: ConnexCSSyncPayload,
    JobType.CONNEXCS_SYNC_CARRIER: ConnexCSSyncPayload,
    JobType.CONNEXCS_SYNC_ALL: ConnexCSSyncPayload,
    JobType.DID_PROVISION: DIDProvisionPayload,
    JobType.DID_BULK_PROVISION: DIDBulkProvisionPayload,
    JobType.DID_RELEASE: DIDReleasePayload,
    JobType.INVOICE_GENERATE: InvoiceGeneratePayload,
    JobType.INVOICE_BULK_GENERATE: InvoiceBulkGeneratePayload,
    JobType.EMAIL_SEND: EmailSendPayload,
    JobType.EMAIL_BULK_SEND: EmailBulkSendPayload,
    JobType.REPORT_GENERATE: ReportGeneratePayload,
    JobType.AI_VOICE_KB_TRAIN: AIVoiceKBTrainPayload,
    JobType.AI_VOICE_KB_INDEX: AIVoiceKBIndexPayload,
    JobType.AI_VOICE_CAMPAIGN_START: AIVoiceCampaignStartPayload,
    JobType.AI_VOICE_CAMPAIGN_CALL: AIVoiceCampaignCallPayload,
    JobType.AI_VOICE_AGENT_SYNC: AIVoiceAgentSyncPayload,
    JobType.WEBHOOK_DELIVER: WebhookDeliverPayload,
    JobType.FX_RATE_UPDATE: FXRateUpdatePayload,
    JobType.BILLING_RECONCILE: BillingReconcilePayload,
    JobType.AUDIT_CLEANUP: AuditCleanupPayload,
    JobType.CDR_PROCESS: CDRProcessPayload,
    JobType.AZ_DESTINATION_IMPORT: AZDestinationImportPayload,
    JobType.AZ_DESTINATION_DELETE_ALL: AZDestinationDeleteAllPayload,
    JobType.TRASH_RESTORE: TrashRestorePayload,
    JobType.TRASH_PURGE: TrashPurgePayload,
}

JOB_TYPE_LABELS: dict[JobType, str] = {
    JobType.RATE_CARD_IMPORT: "Rate Card Import",
    JobType.RATE_CARD_EXPORT: "Rate Card Export",
    JobType.CONNEXCS_SYNC_CUSTOMER: "ConnexCS Customer Sync",
    JobType.CONNEXCS_SYNC_CARRIER: "ConnexCS Carrier Sync",
    JobType.CONNEXCS_SYNC_ALL: "ConnexCS Full Sync",
    JobType.DID_PROVISION: "DID Provision",
    JobType.DID_BULK_PROVISION: "DID Bulk Provision",
    JobType.DID_RELEASE: "DID Release",
    JobType.INVOICE_GENERATE: "Invoice Generate",
    JobType.INVOICE_BULK_GENERATE: "Invoice Bulk Generate",
    JobType.EMAIL_SEND: "Email Send",
    JobType.EMAIL_BULK_SEND: "Email Bulk Send",
    JobType.REPORT_GENERATE: "Report Generate",
    JobType.AI_VOICE_KB_TRAIN: "AI Voice KB Train",
    JobType.AI_VOICE_KB_INDEX: "AI Voice KB Index",
    JobType.AI_VOICE_CAMPAIGN_START: "AI Voice Campaign Start",
    JobType.AI_VOICE_CAMPAIGN_CALL: "AI Voice Campaign Call",
    JobType.AI_VOICE_AGENT_SYNC: "AI Voice Agent Sync",
    JobType.WEBHOOK_DELIVER: "Webhook Deliver",
    JobType.FX_RATE_UPDATE: "FX Rate Update",
    JobType.BILLING_RECONCILE: "Billing Reconcile",
    JobType.AUDIT_CLEANUP: "Audit Cleanup",
    JobType.CDR_PROCESS: "CDR Process",
    JobType.AZ_DESTINATION_IMPORT: "A-Z Destination Import",
    JobType.AZ_DESTINATION_DELETE_ALL: "A-Z Destination Delete All",
    JobType.TRASH_RESTORE: "Trash Restore",
    JobType.TRASH_PURGE: "Trash Purge",
}

JOB_TYPE_CATEGORIES: dict[str, list[JobType]] = {
    "Rate Cards": [JobType.RATE_CARD_IMPORT, JobType.RATE_CARD_EXPORT],
    "ConnexCS": [
        JobType.CONNEXCS_SYNC_CUSTOMER,
        JobType.CONNEXCS_SYNC_CARRIER,
        JobType.CONNEXCS_SYNC_ALL,
    ],
    "DIDs": [JobType.DID_PROVISION, JobType.DID_BULK_PROVISION, JobType.DID_RELEASE],
    "Billing": [
        JobType.INVOICE_GENERATE,
        JobType.INVOICE_BULK_GENERATE,
        JobType.BILLING_RECONCILE,
        JobType.FX_RATE_UPDATE,
    ],
    "Communications": [
        JobType.EMAIL_SEND,
        JobType.EMAIL_BULK_SEND,
        JobType.WEBHOOK_DELIVER,
    ],
    "AI Voice": [
        JobType.AI_VOICE_KB_TRAIN,
        JobType.AI_VOICE_KB_INDEX,
        JobType.AI_VOICE_CAMPAIGN_START,
        JobType.AI_VOICE_CAMPAIGN_CALL,
        JobType.AI_VOICE_AGENT_SYNC,
    ],
    "Data": [
        JobType.REPORT_GENERATE,
        JobType.CDR_PROCESS,
        JobType.AZ_DESTINATION_IMPORT,
        JobType.AZ_DESTINATION_DELETE_ALL,
    ],
    "Maintenance": [JobType.AUDIT_CLEANUP, JobType.TRASH_RESTORE, JobType.TRASH_PURGE],
}


_KNOWN_TYPES = frozenset(job_type.value for job_type in JobType)


def is_known_job_type(job_type: str) -> bool:
    return job_type in _KNOWN_TYPES


def job_type_label(job_type: str) -> str:
    """Human label for a job type; unknown types fall back to their identifier."""
    if is_known_job_type(job_type):
        return JOB_TYPE_LABELS[JobType(job_type)]
    return job_type


def validate_payload(job_type: JobType, payload: dict[str, Any]) -> BasePayload:
    """Validate a payload against its job type's model (raises pydantic.ValidationError)."""
    return PAYLOAD_MODELS[job_type].model_validate(payload)
