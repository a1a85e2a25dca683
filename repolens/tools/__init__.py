"""Clients for external collaborators (capability registry)."""
