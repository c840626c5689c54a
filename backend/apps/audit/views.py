"""
Audit Trail API Views.

API Endpoints:
- GET /api/v1/audit/history/ - Entity modification history
- GET /api/v1/audit/verify/ - Verify chain integrity
- GET /api/v1/audit/stats/ - Audit trail statistics
"""

from rest_framework.decorators import api_view
from rest_framework.response import Response
from rest_framework import status
from .services import AuditRecorder


@api_view(['GET'])
def entity_history(request):
    """
    Get audit history for an entity.

    Inputs (query parameters):
        - entity_type: Required. Type of entity (CRFInstance, DiscrepancyNote)
        - entity_id: Required. ID of the entity to look up

    Usage: GET /api/v1/audit/history/?entity_type=CRFInstance&entity_id=100
    """
    entity_type = request.query_params.get('entity_type')
    entity_id = request.query_params.get('entity_id')

    if not entity_type or not entity_id:
        return Response(
            {'error': 'entity_type and entity_id required'},
            status=status.HTTP_400_BAD_REQUEST
        )

    history = AuditRecorder().get_entity_history(entity_type, entity_id)

    return Response({
        'entity_type': entity_type,
        'entity_id': entity_id,
        'history': history,
        'total_events': len(history)
    })


@api_view(['GET'])
def verify_chain(request):
    """
    Verify audit chain integrity.

    Side effects: None (full read of the audit table)

    Usage: GET /api/v1/audit/verify/
    """
    return Response(AuditRecorder().verify_chain_integrity())


@api_view(['GET'])
def audit_stats(request):
    """Usage: GET /api/v1/audit/stats/"""
    return Response(AuditRecorder().get_audit_stats())
