"""Job queue: descriptors, the directory state store, and the worker."""
