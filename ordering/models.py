"""
Expose ORM models for Django's auto-discovery while keeping real definitions
under the infrastructure module.
"""

from ordering.infra.models import *  # noqa: F401,F403
from ordering.infra.notification_queue import NotificationTaskORM  # noqa: F401
