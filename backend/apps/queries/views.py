"""
Query (Discrepancy Note) API Views.

API Endpoints:
- GET  /api/v1/queries/ - Root queries, filterable (crf_instance, resolution_status,
  note_type, assigned_user_id, study_id, is_open)
- POST /api/v1/queries/ - Raise a query on a CRF
- GET  /api/v1/queries/<id>/thread/ - Query followed by its responses
- POST /api/v1/queries/<id>/respond|propose|close|reopen|reassign/
- POST /api/v1/queries/bulk/close/ - Close many queries
- POST /api/v1/queries/bulk/status/ - Move many queries to one status
- GET  /api/v1/queries/stats/?study_id= - Root query counts by status and type
"""

from rest_framework.decorators import api_view
from rest_framework.response import Response
from rest_framework import status
from apps.core.auth_helpers import require_actor
from .filters import DiscrepancyNoteFilter
from .models import DiscrepancyNote
from .serializers import (
    BulkCloseSerializer, BulkStatusSerializer, CreateQuerySerializer,
    DiscrepancyNoteSerializer, NoteSerializer, ReassignSerializer,
    ReopenSerializer, RespondSerializer,
)
from .services import QueryWorkflow


def _action_response(result, success_status=status.HTTP_200_OK):
    if result.success:
        code = success_status
    elif result.not_found:
        code = status.HTTP_404_NOT_FOUND
    else:
        code = status.HTTP_409_CONFLICT
    return Response(result.as_dict(), status=code)


def _invalid(serializer):
    return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'POST'])
def query_list(request):
    """
    List root queries or raise a new one.

    GET inputs (query parameters): any DiscrepancyNoteFilter field
    POST inputs (JSON body): crf_instance_id, description, detailed_notes,
        note_type, item_name, assigned_user_id, actor_id

    Usage: GET /api/v1/queries/?crf_instance=100&is_open=true
    """
    if request.method == 'POST':
        return _create_query(request)

    filterset = DiscrepancyNoteFilter(
        request.query_params,
        queryset=DiscrepancyNote.objects.roots().order_by('-created_at', '-note_id'),
    )
    if not filterset.is_valid():
        return Response(filterset.errors, status=status.HTTP_400_BAD_REQUEST)

    queries = filterset.qs
    return Response({
        'queries': DiscrepancyNoteSerializer(queries, many=True).data,
        'total_count': queries.count(),
    })


@require_actor
def _create_query(request, actor_id):
    serializer = CreateQuerySerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)

    data = serializer.validated_data
    result = QueryWorkflow().create_query(
        data['crf_instance_id'],
        actor_id,
        data['description'],
        detailed_notes=data['detailed_notes'],
        note_type=data['note_type'],
        item_name=data['item_name'],
        assigned_user_id=data['assigned_user_id'],
    )
    return _action_response(result, success_status=status.HTTP_201_CREATED)


@api_view(['GET'])
def query_thread(request, query_id):
    """Usage: GET /api/v1/queries/12/thread/"""
    thread = QueryWorkflow().get_query_thread(query_id)
    notes = list(thread)
    if not notes:
        return Response(
            {'error': f'Query {query_id} not found'},
            status=status.HTTP_404_NOT_FOUND
        )
    return Response({
        'query_id': query_id,
        'thread': DiscrepancyNoteSerializer(notes, many=True).data,
        'response_count': len(notes) - 1,
    })


@api_view(['POST'])
@require_actor
def respond(request, query_id, actor_id):
    """Usage: POST /api/v1/queries/12/respond/ {"description": "...", "actor_id": 7}"""
    serializer = RespondSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)

    data = serializer.validated_data
    result = QueryWorkflow().respond(
        query_id, actor_id, data['description'],
        detailed_notes=data['detailed_notes'],
        new_status=data['new_status'],
    )
    return _action_response(result)


@api_view(['POST'])
@require_actor
def propose_resolution(request, query_id, actor_id):
    serializer = NoteSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    result = QueryWorkflow().propose_resolution(
        query_id, actor_id, note=serializer.validated_data['note']
    )
    return _action_response(result)


@api_view(['POST'])
@require_actor
def close_query(request, query_id, actor_id):
    serializer = NoteSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    result = QueryWorkflow().close(query_id, actor_id, note=serializer.validated_data['note'])
    return _action_response(result)


@api_view(['POST'])
@require_actor
def reopen_query(request, query_id, actor_id):
    """Usage: POST /api/v1/queries/12/reopen/ {"reason": "...", "actor_id": 7}"""
    serializer = ReopenSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    result = QueryWorkflow().reopen(query_id, actor_id, serializer.validated_data['reason'])
    return _action_response(result)


@api_view(['POST'])
@require_actor
def reassign_query(request, query_id, actor_id):
    serializer = ReassignSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    result = QueryWorkflow().reassign(
        query_id, serializer.validated_data['assigned_user_id'], actor_id
    )
    return _action_response(result)


@api_view(['POST'])
@require_actor
def bulk_close(request, actor_id):
    """Usage: POST /api/v1/queries/bulk/close/ {"ids": [12, 13], "actor_id": 7}"""
    serializer = BulkCloseSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    data = serializer.validated_data
    batch = QueryWorkflow().bulk_close(data['ids'], actor_id, data['reason'])
    return Response(batch.as_dict())


@api_view(['POST'])
@require_actor
def bulk_status(request, actor_id):
    serializer = BulkStatusSerializer(data=request.data)
    if not serializer.is_valid():
        return _invalid(serializer)
    data = serializer.validated_data
    batch = QueryWorkflow().bulk_update_status(
        data['ids'], data['new_status'], actor_id, data['reason']
    )
    return Response(batch.as_dict())


@api_view(['GET'])
def query_stats(request):
    """Usage: GET /api/v1/queries/stats/?study_id=STUDY-01"""
    study_id = request.query_params.get('study_id')
    if not study_id:
        return Response(
            {'error': 'study_id required'},
            status=status.HTTP_400_BAD_REQUEST
        )

    workflow = QueryWorkflow()
    return Response({
        'study_id': study_id,
        'by_status': workflow.count_by_status(study_id),
        'by_type': workflow.count_by_type(study_id),
    })
