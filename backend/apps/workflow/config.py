"""
Workflow configuration resolution.

Resolves the effective optional-phase requirements for a form definition
in a study: study override, then global row, then built-in defaults.
"""

from dataclasses import dataclass, field
from django.conf import settings
from django.db.models import F, Q
from .models import FormWorkflowConfig


@dataclass(frozen=True)
class ResolvedWorkflowConfig:
    requires_sdv: bool = False
    requires_signature: bool = False
    requires_dde: bool = False
    query_route_to_users: tuple = field(default_factory=tuple)
    source: str = 'default'

    @property
    def default_query_assignee(self):
        return self.query_route_to_users[0] if self.query_route_to_users else None

    def as_dict(self):
        return {
            'requires_sdv': self.requires_sdv,
            'requires_signature': self.requires_signature,
            'requires_dde': self.requires_dde,
            'query_route_to_users': list(self.query_route_to_users),
            'source': self.source,
        }


DEFAULT_WORKFLOW_CONFIG = ResolvedWorkflowConfig()


def workflow_config_enabled():
    return settings.EDC_FEATURES.get('WORKFLOW_CONFIG', True)


def get_form_workflow_config(form_definition_id, study_id=None):
    """
    Get the effective configuration for a form definition.

    Args:
        form_definition_id: Form definition to resolve
        study_id: Study whose override takes precedence, if any

    Returns:
        ResolvedWorkflowConfig (defaults when nothing is configured)
    """
    if not workflow_config_enabled():
        return DEFAULT_WORKFLOW_CONFIG

    row = (
        FormWorkflowConfig.objects
        .filter(form_definition_id=form_definition_id)
        .filter(Q(study_id=study_id) | Q(study__isnull=True))
        .order_by(F('study').asc(nulls_last=True))
        .first()
    )
    if row is None:
        return DEFAULT_WORKFLOW_CONFIG

    route = tuple(
        int(user_id) for user_id in (row.query_route_to_users or [])
        if user_id is not None
    )
    return ResolvedWorkflowConfig(
        requires_sdv=row.requires_sdv,
        requires_signature=row.requires_signature,
        requires_dde=row.requires_dde,
        query_route_to_users=route,
        source='study' if row.study_id else 'global',
    )


def config_for_crf(crf):
    """Resolve the configuration that applies to a CRF instance."""
    return get_form_workflow_config(crf.form_definition_id, crf.study_id)
