"""Clients des agences."""
