from extensions import db
from utils.helpers import utcnow, isoformat_utc
from .suppression_record import SCHEMA_VERSION

# Reserved providerId value accepted over HTTP meaning "never resolve this campaign".
IGNORED_SENTINEL = '__ignored__'


class CampaignMapping(db.Model):
    """
    Manual override from a local campaign reference (id or display name) to the provider campaign id.

    A row is either a mapping (`provider_id` set, `ignored` false) or an ignore marker (`ignored` true,
    `provider_id` null). The sentinel string only exists at the HTTP boundary; it is never stored.
    """
    __tablename__ = 'campaign_mappings'

    key = db.Column(db.String(512), primary_key=True)
    provider_id = db.Column(db.String(64), nullable=True)
    ignored = db.Column(db.Boolean, nullable=False, default=False)
    # Display name supplied alongside the mapping, kept for the admin listing.
    display_name = db.Column(db.String(512), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)
    schema_version = db.Column(db.Integer, nullable=False, default=SCHEMA_VERSION)

    @property
    def public_value(self):
        """Value as shown over HTTP: the provider id, or the sentinel for ignored campaigns."""
        return IGNORED_SENTINEL if self.ignored else self.provider_id

    def to_dict(self):
        return {
            'key': self.key,
            'providerId': self.public_value,
            'ignored': self.ignored,
            'dashboardName': self.display_name,
            'updatedAt': isoformat_utc(self.updated_at),
        }

    def __repr__(self):
        return f'<CampaignMapping {self.key!r} -> {self.public_value!r}>'
