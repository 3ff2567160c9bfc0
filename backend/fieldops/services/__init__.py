"""Admin services for plans and plan overrides."""
