"""Telegram chat surface."""
