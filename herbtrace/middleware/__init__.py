"""herbtrace.middleware: request hooks registered by the app factory."""
