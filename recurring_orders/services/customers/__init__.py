"""Customer directory used for default shipping addresses."""
