"""Instant replay recorder: segment ring buffer supervision and export."""
