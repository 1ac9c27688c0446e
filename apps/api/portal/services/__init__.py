"""Service layer for the portal API."""
