"""Concrete adapters for the infra contracts."""
