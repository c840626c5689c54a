"""
Notification API Views.

API Endpoints:
- GET  /api/v1/notifications/unread/?user_id=<id> - Unread notifications for a user
- POST /api/v1/notifications/<id>/read/ - Mark one notification read
- POST /api/v1/notifications/read-all/ - Mark every notification read
"""

from rest_framework.decorators import api_view
from rest_framework.response import Response
from rest_framework import status
from apps.core.auth_helpers import resolve_actor_id
from .services import NotificationDispatcher


def _serialize(notification):
    return {
        'notification_id': notification.notification_id,
        'notification_type': notification.notification_type,
        'title': notification.title,
        'message': notification.message,
        'entity_type': notification.entity_type,
        'entity_id': notification.entity_id,
        'study_id': notification.study_id,
        'created_at': notification.created_at.isoformat(),
    }


@api_view(['GET'])
def unread_notifications(request):
    """
    Usage: GET /api/v1/notifications/unread/?user_id=7
    """
    user_id = resolve_actor_id(request, request.query_params, field='user_id')
    if user_id is None:
        return Response(
            {'error': 'user_id required'},
            status=status.HTTP_400_BAD_REQUEST
        )

    result = NotificationDispatcher().get_unread(user_id)
    return Response({
        'user_id': user_id,
        'total_unread': result['total_unread'],
        'data': [_serialize(n) for n in result['data']],
    })


@api_view(['POST'])
def mark_read(request, notification_id):
    """Usage: POST /api/v1/notifications/12/read/ {"user_id": 7}"""
    user_id = resolve_actor_id(request, request.data, field='user_id')
    if user_id is None:
        return Response(
            {'error': 'user_id required'},
            status=status.HTTP_400_BAD_REQUEST
        )

    if not NotificationDispatcher().mark_as_read(notification_id, user_id):
        return Response(
            {'error': f'Unread notification {notification_id} not found'},
            status=status.HTTP_404_NOT_FOUND
        )
    return Response({'success': True})


@api_view(['POST'])
def mark_all_read(request):
    user_id = resolve_actor_id(request, request.data, field='user_id')
    if user_id is None:
        return Response(
            {'error': 'user_id required'},
            status=status.HTTP_400_BAD_REQUEST
        )

    updated = NotificationDispatcher().mark_all_as_read(user_id)
    return Response({'success': True, 'updated_count': updated})
