"""Pure batch domain types."""
