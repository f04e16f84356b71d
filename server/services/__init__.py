"""Services package for Plus Stack room fanout and administration."""

from .fanout import TopicFanout, ObserverInfo
from .admin_service import AdminService, AdminSession, POWERS

__all__ = [
    "TopicFanout",
    "ObserverInfo",
    "AdminService",
    "AdminSession",
    "POWERS",
]
