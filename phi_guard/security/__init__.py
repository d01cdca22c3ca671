"""Security: policy store, authorization decisions, cold-tier sealing. No FastAPI."""
