"""Shared helpers for the traffic volume report."""
