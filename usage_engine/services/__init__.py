"""Service layer for the usage analytics engine."""
