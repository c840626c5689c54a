"""
Shared fixtures: one study/subject/event with three data-complete CRFs.

- CRF 100 (Vital Signs): form requires SDV, 2 open queries
- CRF 101 (Adverse Events): 1 open query
- CRF 102 (Demographics): eligible for lock
"""

from types import SimpleNamespace

import pytest
from rest_framework.test import APIClient

from apps.core.models import (
    CRFInstance, CRFStatus, CompletionPhase, FormDefinition, Site, Study, StudyEvent, Subject,
)
from apps.queries.models import DiscrepancyNote, NoteType, ResolutionStatus
from apps.queries.services import QueryWorkflow
from apps.workflow.models import FormWorkflowConfig
from apps.workflow.services import LifecycleEngine

ACTOR = 7
OWNER = 3
MONITOR = 5


def make_crf(event, form, crf_instance_id, **fields):
    values = {
        'status': CRFStatus.DATA_COMPLETE,
        'completion_phase': CompletionPhase.DATA_ENTRY_COMPLETE,
        'owner_id': OWNER,
    }
    values.update(fields)
    return CRFInstance.objects.create(
        crf_instance_id=crf_instance_id,
        study_event=event,
        form_definition=form,
        **values
    )


def open_query(crf, description='Please confirm value', **fields):
    values = {
        'note_type': NoteType.QUERY,
        'resolution_status': ResolutionStatus.NEW,
        'owner_id': MONITOR,
        'assigned_user_id': OWNER,
    }
    values.update(fields)
    return DiscrepancyNote.objects.create(crf_instance=crf, description=description, **values)


@pytest.fixture
def study(db):
    return Study.objects.create(study_id='STUDY-01', study_name='Lock Readiness Study')


@pytest.fixture
def subject(study):
    site = Site.objects.create(site_id='STUDY-01_001', study=study, site_number='001')
    return Subject.objects.create(study=study, site=site, label='001-001')


@pytest.fixture
def event(subject):
    return StudyEvent.objects.create(subject=subject, event_name='Baseline', status='completed')


@pytest.fixture
def forms(db):
    return SimpleNamespace(
        vitals=FormDefinition.objects.create(form_oid='F_VITALS', form_name='Vital Signs'),
        ae=FormDefinition.objects.create(form_oid='F_AE', form_name='Adverse Events'),
        dm=FormDefinition.objects.create(form_oid='F_DM', form_name='Demographics'),
    )


@pytest.fixture
def vitals_config(forms):
    return FormWorkflowConfig.objects.create(
        form_definition=forms.vitals,
        requires_sdv=True,
        query_route_to_users=[MONITOR],
    )


@pytest.fixture
def scenario(event, forms, vitals_config):
    crf100 = make_crf(event, forms.vitals, 100)
    crf101 = make_crf(event, forms.ae, 101)
    crf102 = make_crf(event, forms.dm, 102)
    queries100 = [
        open_query(crf100, 'Systolic BP out of range'),
        open_query(crf100, 'Heart rate missing units'),
    ]
    query101 = open_query(crf101, 'AE onset before consent')
    return SimpleNamespace(
        event=event,
        subject=event.subject,
        crf100=crf100,
        crf101=crf101,
        crf102=crf102,
        queries100=queries100,
        query101=query101,
    )


@pytest.fixture
def engine():
    return LifecycleEngine()


@pytest.fixture
def workflow():
    return QueryWorkflow()


@pytest.fixture
def api_client():
    return APIClient()
