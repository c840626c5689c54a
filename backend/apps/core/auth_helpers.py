"""
Actor resolution helpers for the lifecycle and query APIs.

Authentication (JWT or session) only establishes who is calling; every
transition records the resolved actor id in the audit trail.

Usage:
    from apps.core.auth_helpers import resolve_actor_id, require_actor

    @api_view(['POST'])
    @require_actor
    def lock_form(request, crf_instance_id, actor_id):
        ...
"""

from functools import wraps
from rest_framework.response import Response
from rest_framework import status


def _coerce_id(value):
    if value is None or value == '':
        return None
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def resolve_actor_id(request, data=None, field='actor_id'):
    """
    Get the acting user id for a request.

    Args:
        request: DRF Request object
        data: Mapping to fall back on (request.data or query params)
        field: Key holding the id in ``data``

    Returns:
        int or None: The authenticated user's pk, else ``data[field]``
    """
    user = getattr(request, 'user', None)
    if user is not None and user.is_authenticated:
        return user.pk

    if data is None:
        return None
    return _coerce_id(data.get(field))


def require_actor(view_func):
    """
    Decorator that resolves the actor and passes it as ``actor_id``.

    Returns 400 JSON when neither an authenticated user nor a valid
    ``actor_id`` in the payload is available.
    """
    @wraps(view_func)
    def wrapper(request, *args, **kwargs):
        data = request.data if request.method != 'GET' else request.query_params
        actor_id = resolve_actor_id(request, data)
        if actor_id is None:
            return Response(
                {'error': 'actor_id required', 'code': 'ACTOR_REQUIRED'},
                status=status.HTTP_400_BAD_REQUEST
            )
        return view_func(request, *args, actor_id=actor_id, **kwargs)
    return wrapper
