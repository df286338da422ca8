"""Provider clients and orchestration services."""
