"""
Content API for the church website.

This package provides a FastAPI application over a namespaced key-value
content store, an identity provider for the admin panel and a blob storage
client for uploaded images.
"""
