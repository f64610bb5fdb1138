"""herbtrace.core: framework-independent building blocks (exceptions)."""
