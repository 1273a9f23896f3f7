"""Per-conversation trackers fed by the connection manager."""

from chatsync.trackers.base import ConversationTracker
from chatsync.trackers.messages import MessageStreamReconciler
from chatsync.trackers.presence import PresenceTracker
from chatsync.trackers.reactions import ReactionAggregator
from chatsync.trackers.receipts import ReadReceiptTracker
from chatsync.trackers.typing import TypingIndicator

__all__ = [
    "ConversationTracker",
    "MessageStreamReconciler",
    "PresenceTracker",
    "ReactionAggregator",
    "ReadReceiptTracker",
    "TypingIndicator",
]
