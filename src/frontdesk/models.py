"""
Imports every ORM module so `Base.metadata` knows all tables.
"""

from frontdesk.calendar.models import CalendarIntegration
from frontdesk.exclusions.models import ExclusionEntry
from frontdesk.operations.models import Operation, ScheduledWait
from frontdesk.owners.models import OwnerSettings, QuotaCounter

__all__ = [
    "CalendarIntegration",
    "ExclusionEntry",
    "Operation",
    "OwnerSettings",
    "QuotaCounter",
    "ScheduledWait",
]
