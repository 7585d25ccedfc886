"""IoT Bridge: copy devices, credentials, config history and gateway bindings
from one IoT device registry to another."""

__version__ = "0.1.0"
