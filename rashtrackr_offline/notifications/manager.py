"""Push notification display and click routing."""

import time
from typing import Any, Callable, Dict, List, Optional

from rashtrackr_offline.database.models import Notification
from rashtrackr_offline.utils.logger import get_logger

EXPLORE_ACTION = "explore"
CLOSE_ACTION = "close"


class NotificationManager:
    """Builds notifications from push payloads and routes clicks.

    Display and window opening are delegated to the host through
    ``sink`` and ``opener`` callables; without them notifications are only
    logged and remembered in ``shown``.
    """

    def __init__(
        self,
        notification_config: Dict[str, Any],
        sink: Optional[Callable[[Notification], None]] = None,
        opener: Optional[Callable[[str], None]] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.config = notification_config or {}
        self.sink = sink
        self.opener = opener
        self.clock = clock
        self.shown: List[Notification] = []
        self.opened: List[str] = []
        self.logger = get_logger("notifications.manager")

    def build(self, data: Optional[str] = None) -> Notification:
        """Build the notification for a push message.

        Args:
            data: Text of the push payload, if any
        """
        icon = self.config.get("icon", "/logo192.png")
        return Notification(
            title=self.config.get("title", "RashTrackr"),
            body=data if data else self.config.get("default_body", "New notification from RashTrackr"),
            icon=icon,
            badge=self.config.get("badge", icon),
            vibrate=list(self.config.get("vibrate", [100, 50, 100])),
            data={"date_of_arrival": int(self.clock() * 1000), "primary_key": 1},
            actions=[
                {"action": EXPLORE_ACTION, "title": "View Report", "icon": icon},
                {"action": CLOSE_ACTION, "title": "Close", "icon": icon},
            ],
        )

    def show(self, data: Optional[str] = None) -> Notification:
        notification = self.build(data)
        self.shown.append(notification)
        self.logger.info(f"Showing notification: {notification.title} - {notification.body}")
        if self.sink is not None:
            self.sink(notification)
        return notification

    def click(self, action: Optional[str], notification: Optional[Notification] = None) -> Optional[str]:
        """Handle a click on a notification or one of its actions.

        Returns:
            The route opened, or None when the click only closes the notification
        """
        if notification is not None:
            notification.close()
        if action != EXPLORE_ACTION:
            return None
        url = self.config.get("click_url", "/dashboard")
        self.opened.append(url)
        self.logger.info(f"Opening {url} from notification click")
        if self.opener is not None:
            self.opener(url)
        return url
