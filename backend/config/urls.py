"""
URL Configuration for the EDC Form Lifecycle & Locking Engine.

This module defines all URL routes for the application including:
- Admin panel access
- REST API endpoints (v1)
- Health check endpoint for monitoring

Reference: Django URL dispatcher docs
https://docs.djangoproject.com/en/5.0/topics/http/urls/
"""

from django.contrib import admin
from django.urls import path, include
from django.http import JsonResponse


def health_check(request):
    """
    Health check endpoint for monitoring and load balancers.

    Purpose: Returns a simple JSON response indicating the server is running.
    Inputs: HTTP GET request (no parameters required)
    Outputs: JSON object with status='ok' and HTTP 200
    Side effects: None (read-only operation)

    Usage: GET /health/
    """
    return JsonResponse({
        'status': 'ok',
        'service': 'EDC Lifecycle Engine',
        'version': '1.0.0'
    })


# Admin site customization - branding for Django admin interface
admin.site.site_header = "EDC Lifecycle Engine"
admin.site.site_title = "EDC Lifecycle Admin"
admin.site.index_title = "Form Lifecycle Administration"


urlpatterns = [
    # =========================================
    # Health Check Endpoint
    # =========================================
    path('health/', health_check, name='health-check'),

    # =========================================
    # Django Admin Panel
    # =========================================
    path('admin/', admin.site.urls),

    # =========================================
    # REST API Endpoints (versioned)
    # All API routes are prefixed with /api/v1/
    # =========================================

    # Form lifecycle - eligibility, lock/freeze/SDV/sign, batches
    path('api/v1/lifecycle/', include('apps.workflow.urls')),

    # Query resolution workflow
    path('api/v1/queries/', include('apps.queries.urls')),

    # Audit trail and chain verification
    path('api/v1/audit/', include('apps.audit.urls')),

    # In-app notifications
    path('api/v1/notifications/', include('apps.notifications.urls')),
]
