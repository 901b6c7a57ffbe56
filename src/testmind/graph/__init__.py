"""Healing state machine."""
