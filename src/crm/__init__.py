"""Contact, tag and activity data engine for a personal CRM."""

__version__ = "0.1.0"
