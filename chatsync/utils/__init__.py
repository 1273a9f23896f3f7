"""Utility functions for chatsync."""

from chatsync.utils.helpers import join_names

__all__ = ["join_names"]
