"""
Core dimension models for the EDC Form Lifecycle & Locking Engine.

Architecture Context:
- These models represent the clinical hierarchy the lifecycle engine acts on
- Study → Subject → Study Event → CRF Instance (one form for one subject at one visit)
- Rows are created by data-entry and scheduling modules; the engine only
  transitions CRF instance state

Models:
- DIM_STUDY
- DIM_SITE
- DIM_SUBJECT
- DIM_STUDY_EVENT
- DIM_FORM_DEFINITION
- DIM_CRF_INSTANCE
"""

from django.db import models


class Study(models.Model):
    """
    DIM_STUDY - Clinical trial study dimension.

    Top-level entity in the hierarchy. Study-specific workflow configuration
    overrides are keyed on this table.

    Business Rules:
    - study_id is the natural key and primary key
    - Each study can have multiple sites and subjects
    """

    study_id = models.CharField(
        max_length=100,
        primary_key=True,
        help_text="Unique study identifier (e.g., 'Study_1', 'NYS-GRE-293')"
    )

    study_name = models.CharField(
        max_length=500,
        help_text="Full name of the clinical trial study"
    )

    status = models.CharField(
        max_length=50,
        default='Active',
        help_text="Study status: Active, Completed, On-Hold"
    )

    # Audit fields
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'dim_study'
        verbose_name = 'Study'
        verbose_name_plural = 'Studies'
        ordering = ['study_id']

    def __str__(self):
        return f"{self.study_id} - {self.study_name}"


class Site(models.Model):
    """
    DIM_SITE - Clinical trial site dimension.

    Business Rules:
    - site_id is composite: study_id + site_number (e.g., "Study_1_101")
    - Each site belongs to exactly one study
    """

    site_id = models.CharField(
        max_length=100,
        primary_key=True,
        help_text="Unique site identifier: {study_id}_{site_number}"
    )

    study = models.ForeignKey(
        Study,
        on_delete=models.CASCADE,
        related_name='sites',
        help_text="Parent study"
    )

    site_number = models.CharField(
        max_length=50,
        help_text="Site number within study (e.g., '101', '102')"
    )

    site_name = models.CharField(
        max_length=500,
        null=True,
        blank=True,
        help_text="Full site name or hospital name (optional)"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'dim_site'
        verbose_name = 'Site'
        verbose_name_plural = 'Sites'
        ordering = ['site_number']

    def __str__(self):
        return f"Site {self.site_number}"


class Subject(models.Model):
    """
    DIM_SUBJECT - Clinical trial subject/patient dimension.

    Subject-level eligibility checks aggregate across every non-removed CRF
    instance scheduled for the subject.

    Data Privacy:
    - label is the pseudonymized identifier visible to sites
    - Real PII never stored in this system
    """

    STATUS_CHOICES = [
        ('Screened', 'Screened'),
        ('Enrolled', 'Enrolled'),
        ('Completed', 'Completed'),
        ('Withdrawn', 'Withdrawn'),
        ('Screen Failed', 'Screen Failed'),
    ]

    subject_id = models.AutoField(primary_key=True)

    study = models.ForeignKey(
        Study,
        on_delete=models.CASCADE,
        related_name='subjects',
        help_text="Parent study"
    )

    site = models.ForeignKey(
        Site,
        on_delete=models.CASCADE,
        related_name='subjects',
        null=True,
        blank=True,
        help_text="Site where subject is enrolled"
    )

    label = models.CharField(
        max_length=100,
        help_text="Subject label visible in the EDC (e.g., '101-005') - PSEUDONYMIZED"
    )

    subject_status = models.CharField(
        max_length=50,
        choices=STATUS_CHOICES,
        default='Enrolled',
        help_text="Current subject lifecycle status"
    )

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'dim_subject'
        verbose_name = 'Subject'
        verbose_name_plural = 'Subjects'
        ordering = ['study', 'label']
        unique_together = [['study', 'label']]

    def __str__(self):
        return f"{self.label} ({self.subject_status})"


class StudyEvent(models.Model):
    """
    DIM_STUDY_EVENT - A scheduled visit for one subject.

    Business Rules:
    - Each event belongs to exactly one subject
    - event_name is protocol-defined (e.g., 'Screening', 'Week 4', 'EOS')
    - CRF instances are attached to an event when the visit is scheduled
    """

    STATUS_CHOICES = [
        ('scheduled', 'Scheduled'),
        ('data_entry_started', 'Data Entry Started'),
        ('completed', 'Completed'),
        ('skipped', 'Skipped'),
    ]

    study_event_id = models.AutoField(primary_key=True)

    subject = models.ForeignKey(
        Subject,
        on_delete=models.CASCADE,
        related_name='study_events',
        help_text="Subject this event belongs to"
    )

    event_name = models.CharField(
        max_length=200,
        help_text="Protocol-defined visit name (e.g., 'Screening', 'Week 4')"
    )

    status = models.CharField(
        max_length=50,
        choices=STATUS_CHOICES,
        default='scheduled',
    )

    scheduled_date = models.DateField(null=True, blank=True)
    start_date = models.DateField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'dim_study_event'
        verbose_name = 'Study Event'
        verbose_name_plural = 'Study Events'
        ordering = ['subject', 'scheduled_date', 'study_event_id']

    def __str__(self):
        return f"{self.subject.label} - {self.event_name}"


class FormDefinition(models.Model):
    """
    DIM_FORM_DEFINITION - CRF template (form + version).

    Workflow configuration (SDV / signature / DDE requirements) is resolved
    per form definition, optionally overridden per study.
    """

    form_definition_id = models.AutoField(primary_key=True)

    form_oid = models.CharField(
        max_length=200,
        unique=True,
        help_text="EDC form OID (object identifier)"
    )

    form_name = models.CharField(
        max_length=200,
        help_text="EDC form name"
    )

    version = models.CharField(
        max_length=50,
        default='v1.0',
        help_text="Form version label"
    )

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'dim_form_definition'
        verbose_name = 'Form Definition'
        verbose_name_plural = 'Form Definitions'
        ordering = ['form_name', 'version']

    def __str__(self):
        return f"{self.form_name} ({self.version})"


class CRFStatus(models.TextChoices):
    AVAILABLE = 'available', 'Available'
    DATA_COMPLETE = 'data_complete', 'Data Complete'
    LOCKED = 'locked', 'Locked'
    REMOVED = 'removed', 'Removed'
    AUTO_REMOVED = 'auto_removed', 'Auto-Removed'


class CompletionPhase(models.IntegerChoices):
    """Ordinal data-entry maturity of a CRF instance."""

    NOT_STARTED = 0, 'Not Started'
    DATA_ENTRY = 1, 'Data Entry'
    DATA_ENTRY_COMPLETE = 2, 'Data Entry Complete'
    DDE_VERIFIED = 3, 'Double Data Entry Verified'
    SIGNED = 4, 'Signed'


REMOVED_STATUSES = (CRFStatus.REMOVED, CRFStatus.AUTO_REMOVED)
COMPLETE_STATUSES = (CRFStatus.DATA_COMPLETE, CRFStatus.LOCKED)


class CRFInstanceQuerySet(models.QuerySet):

    def active(self):
        """Exclude removed and auto-removed instances."""
        return self.exclude(status__in=REMOVED_STATUSES)

    def for_subject(self, subject_id):
        return self.filter(study_event__subject_id=subject_id)

    def for_event(self, study_event_id):
        return self.filter(study_event_id=study_event_id)

    def for_study(self, study_id):
        return self.filter(study_event__subject__study_id=study_id)


class CRFInstance(models.Model):
    """
    DIM_CRF_INSTANCE - One form's data for one subject at one study event.

    Architecture Integration:
    - The unit the Form Lifecycle Engine transitions (lock, freeze, SDV, sign)
    - Discrepancy notes (queries) link here and block progression while open
    - Every transition writes an immutable audit event

    Business Rules:
    - status tracks record availability: available → data_complete → locked;
      removed / auto_removed instead of physical deletion
    - completion_phase is the ordinal data-entry maturity marker
    - frozen is an overlay independent of status; lock supersedes it
    - The current lifecycle phase is derived, never stored
      (see apps.workflow.phases.derive_phase)
    """

    crf_instance_id = models.AutoField(primary_key=True)

    study_event = models.ForeignKey(
        StudyEvent,
        on_delete=models.CASCADE,
        related_name='crf_instances',
        help_text="Study event (visit) this form was attached to"
    )

    form_definition = models.ForeignKey(
        FormDefinition,
        on_delete=models.PROTECT,
        related_name='crf_instances',
        help_text="Form template and version"
    )

    status = models.CharField(
        max_length=20,
        choices=CRFStatus.choices,
        default=CRFStatus.AVAILABLE,
        help_text="Record availability status"
    )

    completion_phase = models.PositiveSmallIntegerField(
        choices=CompletionPhase.choices,
        default=CompletionPhase.NOT_STARTED,
        help_text="Ordinal data-entry maturity"
    )

    sdv_verified = models.BooleanField(
        default=False,
        help_text="Source data verification completed"
    )

    signed = models.BooleanField(
        default=False,
        help_text="Investigator electronic signature applied"
    )

    frozen = models.BooleanField(
        default=False,
        help_text="Reversible pre-lock protection against routine edits"
    )

    owner_id = models.IntegerField(
        null=True,
        blank=True,
        help_text="User who entered the data (notified of lifecycle changes)"
    )

    # Audit fields
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    updated_by = models.IntegerField(null=True, blank=True)
    locked_by = models.IntegerField(null=True, blank=True)
    locked_at = models.DateTimeField(null=True, blank=True)
    frozen_by = models.IntegerField(null=True, blank=True)
    frozen_at = models.DateTimeField(null=True, blank=True)
    sdv_verified_by = models.IntegerField(null=True, blank=True)
    sdv_verified_at = models.DateTimeField(null=True, blank=True)
    signed_by = models.IntegerField(null=True, blank=True)
    signed_at = models.DateTimeField(null=True, blank=True)

    objects = CRFInstanceQuerySet.as_manager()

    class Meta:
        db_table = 'dim_crf_instance'
        verbose_name = 'CRF Instance'
        verbose_name_plural = 'CRF Instances'
        ordering = ['study_event', 'crf_instance_id']
        indexes = [
            models.Index(fields=['study_event', 'status']),
            models.Index(fields=['status']),
        ]

    def __str__(self):
        return f"CRF {self.crf_instance_id} - {self.form_definition.form_name}"

    @property
    def study_id(self):
        return self.study_event.subject.study_id

    @property
    def is_removed(self):
        return self.status in REMOVED_STATUSES

    @property
    def is_locked(self):
        return self.status == CRFStatus.LOCKED

    @property
    def is_data_complete(self):
        return (
            self.status in COMPLETE_STATUSES
            or self.completion_phase >= CompletionPhase.DATA_ENTRY_COMPLETE
        )
