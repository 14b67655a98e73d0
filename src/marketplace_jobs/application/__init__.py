"""Application layer: job handlers, services and ports."""
