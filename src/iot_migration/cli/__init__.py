"""Command-line interface for IoT Bridge."""
