from .auth import User, SessionRecord, ROLES, STATUSES
from .overrides import MetricOverride
from .security import SecurityEvent

__all__ = [
    'User', 'SessionRecord', 'ROLES', 'STATUSES',
    'MetricOverride',
    'SecurityEvent',
]
