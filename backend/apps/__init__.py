"""
Django applications for the EDC Form Lifecycle & Locking Engine.
"""
