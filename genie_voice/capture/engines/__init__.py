"""Voice capture backend implementations, imported on demand by the factory."""
