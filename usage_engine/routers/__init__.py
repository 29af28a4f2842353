"""API routers for the Usage Analytics Engine."""
