"""
URL routes for in-app notifications.
"""

from django.urls import path
from . import views

app_name = 'notifications'

urlpatterns = [
    path('unread/', views.unread_notifications, name='unread'),
    path('read-all/', views.mark_all_read, name='read-all'),
    path('<int:notification_id>/read/', views.mark_read, name='mark-read'),
]
