"""Notification events and their email rendering."""
