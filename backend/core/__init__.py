"""Core business rules: domain model, plans, errors and store contracts."""
