"""Progress display and failure reporting."""
