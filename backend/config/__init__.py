"""
Configuration package for the EDC Form Lifecycle & Locking Engine.

This package contains Django settings, URL routing, and WSGI configuration.
"""
