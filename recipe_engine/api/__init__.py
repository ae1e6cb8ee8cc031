"""
HTTP API (FastAPI)
"""
