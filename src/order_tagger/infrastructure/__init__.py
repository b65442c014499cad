"""Outbound integrations: remote API client and request throttling."""
