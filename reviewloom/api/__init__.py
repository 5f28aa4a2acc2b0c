"""
REST API module for ReviewLoom.

Provides FastAPI endpoints for:
- Repository connections
- Pull request analyses (create, read, list, stats, export, rerun)
"""
