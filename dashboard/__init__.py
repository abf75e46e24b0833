"""
Dashboard Package.

FastAPI read API for validator charts and status grids.
"""
