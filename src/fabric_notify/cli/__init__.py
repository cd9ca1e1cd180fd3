"""Command-line interface (``fabric-notify``)."""
