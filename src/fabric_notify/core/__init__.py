"""Core building blocks: errors, secrets, settings and logging."""
