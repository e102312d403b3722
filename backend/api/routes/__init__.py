"""ConfSync API route modules."""
