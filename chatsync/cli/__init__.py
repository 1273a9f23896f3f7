"""CLI module for chatsync."""
