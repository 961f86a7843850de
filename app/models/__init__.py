from app.models.phase import Phase, Priority, ConnectionMethod
from app.models.deal import (
    DealCreate,
    DealUpdate,
    DealResponse,
    FollowUpChecklist,
    BillingInfo,
    MetadataResponse,
)
from app.models.line import (
    LineSendRequest,
    LineSendResponse,
    TemplateResponse,
    TemplateUpdate,
    QrCodeResponse,
    LineConnectionSummary,
    WebhookResponse,
)
from app.models.ledger import (
    LedgerRecord,
    LedgerExportResponse,
    LedgerSyncRequest,
    LedgerSyncResponse,
)
from app.models.notification import ReminderBatchResponse, ReminderCheckResponse
from app.models.myosoku import MyosokuData, MyosokuAnalyzeResponse

__all__ = [
    "Phase",
    "Priority",
    "ConnectionMethod",
    "DealCreate",
    "DealUpdate",
    "DealResponse",
    "FollowUpChecklist",
    "BillingInfo",
    "MetadataResponse",
    "LineSendRequest",
    "LineSendResponse",
    "TemplateResponse",
    "TemplateUpdate",
    "QrCodeResponse",
    "LineConnectionSummary",
    "WebhookResponse",
    "LedgerRecord",
    "LedgerExportResponse",
    "LedgerSyncRequest",
    "LedgerSyncResponse",
    "ReminderBatchResponse",
    "ReminderCheckResponse",
    "MyosokuData",
    "MyosokuAnalyzeResponse",
]
