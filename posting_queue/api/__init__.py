"""HTTP API for integrations and the posting queue."""
