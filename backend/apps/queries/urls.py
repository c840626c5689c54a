"""
URL routes for discrepancy notes (queries).
All routes are prefixed with /api/v1/queries/ from the main urls.py.
"""

from django.urls import path
from . import views

app_name = 'queries'

urlpatterns = [
    path('', views.query_list, name='list'),
    path('stats/', views.query_stats, name='stats'),

    # Bulk operations
    path('bulk/close/', views.bulk_close, name='bulk-close'),
    path('bulk/status/', views.bulk_status, name='bulk-status'),

    # Single query actions
    path('<int:query_id>/thread/', views.query_thread, name='thread'),
    path('<int:query_id>/respond/', views.respond, name='respond'),
    path('<int:query_id>/propose/', views.propose_resolution, name='propose'),
    path('<int:query_id>/close/', views.close_query, name='close'),
    path('<int:query_id>/reopen/', views.reopen_query, name='reopen'),
    path('<int:query_id>/reassign/', views.reassign_query, name='reassign'),
]
