"""Click command groups, one module per maintenance feature."""
