"""
Audit Trail URL Configuration.

All routes here are prefixed with /api/v1/audit/ from the main urls.py.
"""

from django.urls import path
from . import views

app_name = 'audit'

urlpatterns = [
    # Entity modification history lookup
    path('history/', views.entity_history, name='entity-history'),

    # Full chain integrity verification
    path('verify/', views.verify_chain, name='verify-chain'),

    path('stats/', views.audit_stats, name='audit-stats'),
]
