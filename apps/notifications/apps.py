import atexit
import logging

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)


class NotificationsConfig(AppConfig):
    name = 'apps.notifications'
    label = 'notifications'
    verbose_name = 'Notifications'

    registry = None

    def ready(self):
        from .realtime import ChannelRegistry

        self.registry = ChannelRegistry(queue_size=getattr(settings, 'REALTIME_QUEUE_SIZE', 100))
        self.registry.start()
        atexit.register(self.registry.close)
