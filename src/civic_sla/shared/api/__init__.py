"""Shared HTTP middleware for the FastAPI application."""
