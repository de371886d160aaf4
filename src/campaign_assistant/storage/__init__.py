from campaign_assistant.storage.checkpoints import CheckpointManager
from campaign_assistant.storage.delivery_outbox import CampaignHandoff, DeliveryOutbox
from campaign_assistant.storage.events import EventEmitter
from campaign_assistant.storage.session_repository import WorkflowSession, WorkflowSessionRepository
from campaign_assistant.storage.store import CampaignStore
from campaign_assistant.storage.telemetry import TelemetryRecorder
from campaign_assistant.storage.usage_ledger import UsageLedger

__all__ = [
    "CampaignHandoff",
    "CampaignStore",
    "CheckpointManager",
    "DeliveryOutbox",
    "EventEmitter",
    "TelemetryRecorder",
    "UsageLedger",
    "WorkflowSession",
    "WorkflowSessionRepository",
]
