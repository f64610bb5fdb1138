"""herbtrace.utils: small HTTP helpers shared by the blueprints."""
