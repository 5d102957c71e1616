"""
HTTP API for repocompare.

Provides FastAPI endpoints for:
- Comparison requests, status, listing and detail
- Progress streaming over Server-Sent Events
- Repository detail and deep-analysis requests
- Budget and cost statistics
"""
