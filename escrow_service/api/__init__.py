"""HTTP API for the escrow service."""
