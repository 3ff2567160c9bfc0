"""FieldOps backend: plan entitlement engine and plan administration API."""
