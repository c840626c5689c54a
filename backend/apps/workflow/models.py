"""
Workflow configuration models.

Per-form (optionally per-study) switches for the optional lifecycle phases
and for routing newly raised queries.
"""

from django.db import models
from apps.core.models import Study, FormDefinition


class FormWorkflowConfig(models.Model):
    """
    CFG_FORM_WORKFLOW - Optional phase requirements for a form definition.

    Business Rules:
    - study NULL means the global default for the form definition
    - A study-specific row overrides the global row for that study
    - Read-only to the lifecycle engine; maintained through the admin
    """

    config_id = models.AutoField(primary_key=True)

    form_definition = models.ForeignKey(
        FormDefinition,
        on_delete=models.CASCADE,
        related_name='workflow_configs',
    )

    study = models.ForeignKey(
        Study,
        on_delete=models.CASCADE,
        related_name='form_workflow_configs',
        null=True,
        blank=True,
        help_text="Study override (empty = applies to every study)"
    )

    requires_sdv = models.BooleanField(default=False)
    requires_signature = models.BooleanField(default=False)
    requires_dde = models.BooleanField(
        default=False,
        help_text="Double data entry verification required before lock"
    )

    query_route_to_users = models.JSONField(
        default=list,
        blank=True,
        help_text="User ids new queries on this form are assigned to (first wins)"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'cfg_form_workflow'
        verbose_name = 'Form Workflow Config'
        verbose_name_plural = 'Form Workflow Configs'
        unique_together = [['form_definition', 'study']]
        constraints = [
            models.UniqueConstraint(
                fields=['form_definition'],
                condition=models.Q(study__isnull=True),
                name='uniq_global_form_workflow',
            ),
        ]

    def __str__(self):
        scope = self.study_id or 'global'
        return f"{self.form_definition} ({scope})"
