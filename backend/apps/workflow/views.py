"""
Form Lifecycle API Views.

API Endpoints:
- GET  /api/v1/lifecycle/eligibility/?scope=subject|event|crf&id=N
- GET  /api/v1/lifecycle/crf/<id>/status/
- POST /api/v1/lifecycle/crf/<id>/lock|unlock|freeze|unfreeze|sdv|sign/
- POST /api/v1/lifecycle/batch/lock|unlock|freeze|sdv/
- POST /api/v1/lifecycle/subject/<id>/lock|unlock/
- POST /api/v1/lifecycle/event/<id>/lock|unlock/
- GET  /api/v1/lifecycle/locked/?study_id=&subject_id=&page=&limit=
- GET  /api/v1/lifecycle/sdv/?study_id=&status=pending|verified&page=&limit=
- GET  /api/v1/lifecycle/signatures/pending/?study_id=

Status mapping:
- applied → 200
- not_found → 404
- ineligible, wrong_state, conflict → 409
- invalid payload → 400
Batch endpoints always answer 200 with the per-id breakdown.
"""

from rest_framework.decorators import api_view
from rest_framework.response import Response
from rest_framework import status
from apps.core.auth_helpers import require_actor
from .eligibility import check_eligibility
from .results import Outcome
from .serializers import (
    BatchRequestSerializer, EligibilityQuerySerializer, ScopeRequestSerializer,
    TransitionRequestSerializer, WorklistQuerySerializer,
)
from .services import LifecycleEngine
from .worklists import get_locked_records, get_pending_signatures, get_sdv_worklist

OUTCOME_STATUS = {
    Outcome.APPLIED: status.HTTP_200_OK,
    Outcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    Outcome.INELIGIBLE: status.HTTP_409_CONFLICT,
    Outcome.WRONG_STATE: status.HTTP_409_CONFLICT,
    Outcome.CONFLICT: status.HTTP_409_CONFLICT,
}

TRANSITIONS = {
    'lock': 'lock',
    'unlock': 'unlock',
    'freeze': 'freeze',
    'unfreeze': 'unfreeze',
    'sdv': 'mark_sdv',
    'sign': 'sign',
}

BATCH_OPERATIONS = {
    'lock': 'batch_lock',
    'unlock': 'batch_unlock',
    'freeze': 'batch_freeze',
    'sdv': 'batch_sdv',
}

SCOPE_OPERATIONS = {
    ('subject', 'lock'): 'lock_subject',
    ('subject', 'unlock'): 'unlock_subject',
    ('event', 'lock'): 'lock_event',
    ('event', 'unlock'): 'unlock_event',
}


@api_view(['GET'])
def eligibility(request):
    """
    Check whether a subject, event or CRF can progress.

    Inputs (query parameters):
        - scope: subject, event or crf
        - id: Entity primary key

    Side effects: None (read-only)

    Usage: GET /api/v1/lifecycle/eligibility/?scope=crf&id=100
    """
    serializer = EligibilityQuerySerializer(data=request.query_params)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    try:
        report = check_eligibility(
            serializer.validated_data['scope'], serializer.validated_data['id']
        )
    except ValueError as e:
        return Response({'error': str(e)}, status=status.HTTP_400_BAD_REQUEST)

    return Response(report.as_dict())


@api_view(['GET'])
def lifecycle_status(request, crf_instance_id):
    """Usage: GET /api/v1/lifecycle/crf/100/status/"""
    data = LifecycleEngine().get_lifecycle_status(crf_instance_id)
    if data is None:
        return Response(
            {'error': f'CRF {crf_instance_id} not found'},
            status=status.HTTP_404_NOT_FOUND
        )
    return Response(data)


@api_view(['POST'])
@require_actor
def crf_transition(request, crf_instance_id, transition, actor_id):
    """
    Apply one lifecycle transition to a CRF.

    Inputs (JSON body):
        - actor_id: Acting user (ignored when the request is authenticated)
        - reason: Optional reason, mandatory for unfreeze

    Usage: POST /api/v1/lifecycle/crf/100/lock/ {"actor_id": 7}
    """
    serializer = TransitionRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    operation = getattr(LifecycleEngine(), TRANSITIONS[transition])
    result = operation(crf_instance_id, actor_id, reason=serializer.validated_data['reason'])

    return Response(result.as_dict(), status=OUTCOME_STATUS[result.outcome])


@api_view(['POST'])
@require_actor
def batch_transition(request, operation, actor_id):
    """
    Apply one lifecycle transition to many CRFs, each independently.

    Inputs (JSON body):
        - ids: CRF instance ids, processed in order
        - actor_id: Acting user (ignored when the request is authenticated)

    Usage: POST /api/v1/lifecycle/batch/lock/ {"ids": [100, 101], "actor_id": 7}
    """
    serializer = BatchRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    run = getattr(LifecycleEngine(), BATCH_OPERATIONS[operation])
    batch = run(serializer.validated_data['ids'], actor_id)

    return Response(batch.as_dict())


@api_view(['POST'])
@require_actor
def scope_transition(request, scope, entity_id, operation, actor_id):
    """
    Lock or unlock all forms of a subject or study event.

    Inputs (JSON body):
        - reason: Mandatory, audited on every form
        - actor_id: Acting user (ignored when the request is authenticated)

    Usage: POST /api/v1/lifecycle/subject/12/lock/ {"reason": "Database lock", "actor_id": 7}
    """
    serializer = ScopeRequestSerializer(data=request.data)
    if not serializer.is_valid():
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)

    run = getattr(LifecycleEngine(), SCOPE_OPERATIONS[(scope, operation)])
    result = run(entity_id, actor_id, serializer.validated_data['reason'])

    return Response(result.as_dict(), status=OUTCOME_STATUS[result.outcome])


def _worklist_params(request):
    serializer = WorklistQuerySerializer(data=request.query_params)
    if not serializer.is_valid():
        return None, Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    return serializer.validated_data, None


@api_view(['GET'])
def locked_records(request):
    """Usage: GET /api/v1/lifecycle/locked/?study_id=STUDY-01&page=1&limit=20"""
    params, error = _worklist_params(request)
    if error:
        return error
    return Response(get_locked_records(
        study_id=params.get('study_id'),
        subject_id=params.get('subject_id'),
        page=params['page'],
        limit=params['limit'],
    ))


@api_view(['GET'])
def sdv_worklist(request):
    """Usage: GET /api/v1/lifecycle/sdv/?study_id=STUDY-01&status=pending"""
    params, error = _worklist_params(request)
    if error:
        return error
    return Response(get_sdv_worklist(
        study_id=params.get('study_id'),
        status=params.get('status'),
        page=params['page'],
        limit=params['limit'],
    ))


@api_view(['GET'])
def pending_signatures(request):
    """Usage: GET /api/v1/lifecycle/signatures/pending/?study_id=STUDY-01"""
    params, error = _worklist_params(request)
    if error:
        return error
    return Response(get_pending_signatures(study_id=params.get('study_id')))
