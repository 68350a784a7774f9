# Models owned by the zone suppression optimizer.
from .suppression_record import SuppressionRecord, SCHEMA_VERSION
from .campaign_mapping import CampaignMapping, IGNORED_SENTINEL
from .audit_event import AuditEvent

LEDGER_SCHEMA_VERSION = SCHEMA_VERSION
