"""Infrastructure layer - Concrete adapters for configuration and the workflow backend."""
