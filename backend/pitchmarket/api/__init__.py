"""
Pitch Market - API
==================

FastAPI routers, dependencies and the application factory.
"""
