"""Order engine services."""
