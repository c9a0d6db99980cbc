"""Matrix transport."""
