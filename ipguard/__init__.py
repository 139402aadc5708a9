"""Login trust and IP verification service."""
