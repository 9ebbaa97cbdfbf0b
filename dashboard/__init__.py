"""Monitoring console API."""
