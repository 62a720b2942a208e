"""
Cycle notifications.
"""

import logging
from abc import ABC, abstractmethod


class Notifier(ABC):
    """Receives a short summary after every scheduled cycle."""

    @abstractmethod
    def send_notification(self, title: str, body: str):
        pass


class LogNotifier(Notifier):
    """Writes notifications to the application log."""

    def __init__(self, name: str = 'keepsake.notifications'):
        self.logger = logging.getLogger(name)

    def send_notification(self, title: str, body: str):
        self.logger.info(f"{title}: {body}")
