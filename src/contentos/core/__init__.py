"""Content OS domain services."""
