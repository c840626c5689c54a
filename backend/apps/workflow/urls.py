"""
URL routes for the form lifecycle engine.
All routes are prefixed with /api/v1/lifecycle/ from the main urls.py.
"""

from django.urls import path
from . import views

app_name = 'workflow'

urlpatterns = [
    path('eligibility/', views.eligibility, name='eligibility'),
    path('crf/<int:crf_instance_id>/status/', views.lifecycle_status, name='crf-status'),
]

# One route per transition so unknown names 404 at the resolver
urlpatterns += [
    path(
        f'crf/<int:crf_instance_id>/{name}/',
        views.crf_transition,
        {'transition': name},
        name=f'crf-{name}',
    )
    for name in views.TRANSITIONS
]

urlpatterns += [
    path(
        f'batch/{name}/',
        views.batch_transition,
        {'operation': name},
        name=f'batch-{name}',
    )
    for name in views.BATCH_OPERATIONS
]

urlpatterns += [
    path(
        f'{scope}/<int:entity_id>/{operation}/',
        views.scope_transition,
        {'scope': scope, 'operation': operation},
        name=f'{scope}-{operation}',
    )
    for scope, operation in views.SCOPE_OPERATIONS
]

urlpatterns += [
    path('locked/', views.locked_records, name='locked-records'),
    path('sdv/', views.sdv_worklist, name='sdv-worklist'),
    path('signatures/pending/', views.pending_signatures, name='pending-signatures'),
]
