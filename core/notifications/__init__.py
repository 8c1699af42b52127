"""Change notifications over PostgreSQL LISTEN/NOTIFY.

Mutations publish inside their transaction, so subscribers only hear about
committed changes. Subscribers re-read state instead of patching it.
"""

from core.notifications.publisher import ChangeNotifier
from core.notifications.listener import ChangeListener, SummaryRefresher

__all__ = [
    "ChangeNotifier",
    "ChangeListener",
    "SummaryRefresher",
]
