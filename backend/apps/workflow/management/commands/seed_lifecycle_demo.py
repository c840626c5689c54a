"""
Management command to seed a lifecycle demo scenario.

Creates one study → site → subject → event with three CRFs:
- CRF 100: data complete, form requires SDV (not verified), 2 open queries
- CRF 101: data complete, 1 open query
- CRF 102: data complete, eligible for lock

Usage:
    python manage.py seed_lifecycle_demo
"""

from django.core.management.base import BaseCommand
from django.db import transaction
from django.utils import timezone
from apps.core.models import (
    CRFInstance, CRFStatus, CompletionPhase, FormDefinition, Site, Study, StudyEvent, Subject,
)
from apps.queries.models import DiscrepancyNote, NoteType, ResolutionStatus
from apps.workflow.models import FormWorkflowConfig

DEMO_FORMS = [
    # (crf_instance_id, form_oid, form_name, requires_sdv, open query descriptions)
    (100, 'F_VITALS', 'Vital Signs', True, [
        'Systolic BP out of range, please confirm',
        'Heart rate missing units',
    ]),
    (101, 'F_AE', 'Adverse Events', False, [
        'AE onset date precedes informed consent',
    ]),
    (102, 'F_DM', 'Demographics', False, []),
]


class Command(BaseCommand):
    help = 'Seeds one subject with three CRFs covering the lock eligibility scenarios'

    def add_arguments(self, parser):
        parser.add_argument('--owner', type=int, default=1,
                            help='User id recorded as data-entry owner and query author')
        parser.add_argument('--monitor', type=int, default=2,
                            help='User id new queries are routed to')

    @transaction.atomic
    def handle(self, *args, **options):
        owner_id = options['owner']
        monitor_id = options['monitor']
        self.stdout.write('Seeding lifecycle demo data...\n')

        # 1. Study
        study, _ = Study.objects.update_or_create(
            study_id='DEMO-LOCK',
            defaults={'study_name': 'Lifecycle Demo Study', 'status': 'Active'}
        )
        self.stdout.write(self.style.SUCCESS(f'  Study: {study.study_id}'))

        # 2. Site
        site, _ = Site.objects.update_or_create(
            site_id=f'{study.study_id}_001',
            defaults={'study': study, 'site_number': '001', 'site_name': 'Demo Hospital'}
        )
        self.stdout.write(self.style.SUCCESS(f'  Site: {site.site_id}'))

        # 3. Subject
        subject, _ = Subject.objects.update_or_create(
            study=study,
            label='001-001',
            defaults={'site': site, 'subject_status': 'Enrolled'}
        )
        self.stdout.write(self.style.SUCCESS(f'  Subject: {subject.label}'))

        # 4. Study event
        today = timezone.now().date()
        event, _ = StudyEvent.objects.update_or_create(
            subject=subject,
            event_name='Baseline',
            defaults={'status': 'completed', 'scheduled_date': today, 'start_date': today}
        )
        self.stdout.write(self.style.SUCCESS(f'  Event: {event.event_name}'))

        # 5. Forms, configuration, CRFs and queries
        for crf_id, form_oid, form_name, requires_sdv, queries in DEMO_FORMS:
            form, _ = FormDefinition.objects.update_or_create(
                form_oid=form_oid,
                defaults={'form_name': form_name}
            )
            FormWorkflowConfig.objects.update_or_create(
                form_definition=form,
                study=None,
                defaults={
                    'requires_sdv': requires_sdv,
                    'query_route_to_users': [monitor_id],
                }
            )
            crf, _ = CRFInstance.objects.update_or_create(
                crf_instance_id=crf_id,
                defaults={
                    'study_event': event,
                    'form_definition': form,
                    'status': CRFStatus.DATA_COMPLETE,
                    'completion_phase': CompletionPhase.DATA_ENTRY_COMPLETE,
                    'sdv_verified': False,
                    'signed': False,
                    'frozen': False,
                    'owner_id': owner_id,
                }
            )
            for description in queries:
                DiscrepancyNote.objects.update_or_create(
                    crf_instance=crf,
                    parent=None,
                    description=description,
                    defaults={
                        'note_type': NoteType.QUERY,
                        'resolution_status': ResolutionStatus.NEW,
                        'owner_id': monitor_id,
                        'assigned_user_id': owner_id,
                    }
                )
            sdv_label = ', requires SDV' if requires_sdv else ''
            self.stdout.write(self.style.SUCCESS(
                f'  CRF {crf_id}: {form_name} ({len(queries)} open queries{sdv_label})'
            ))

        self.stdout.write(self.style.SUCCESS('\nLifecycle demo data seeding complete!'))
        self.stdout.write('\nTry:')
        self.stdout.write('  python manage.py batch_lifecycle lock --ids 100 101 102 --actor 7')
