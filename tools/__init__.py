"""DevOps productivity tools."""
