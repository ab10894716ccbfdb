"""HTTP API for streaming orchestration turns."""
