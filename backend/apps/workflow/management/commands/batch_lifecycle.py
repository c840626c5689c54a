"""
Apply a lifecycle transition to a list of CRF instances.

Each id runs in its own transaction; failures are reported per id.

Usage:
    python manage.py batch_lifecycle lock --ids 100 101 102 --actor 7
"""

from django.core.management.base import BaseCommand, CommandError
from apps.workflow.services import LifecycleEngine

OPERATIONS = {
    'lock': 'batch_lock',
    'unlock': 'batch_unlock',
    'freeze': 'batch_freeze',
    'sdv': 'batch_sdv',
}


class Command(BaseCommand):
    help = 'Lock, unlock, freeze or SDV-verify CRF instances in bulk'

    def add_arguments(self, parser):
        parser.add_argument('operation', choices=sorted(OPERATIONS))
        parser.add_argument('--ids', type=int, nargs='+', required=True,
                            help='CRF instance ids, processed in order')
        parser.add_argument('--actor', type=int, required=True,
                            help='User id recorded in the audit trail')

    def handle(self, *args, **options):
        operation = options['operation']
        run = getattr(LifecycleEngine(), OPERATIONS[operation])
        batch = run(options['ids'], options['actor'])

        for crf_instance_id, result in batch.results:
            if result is not None and result.success:
                self.stdout.write(self.style.SUCCESS(f'  CRF {crf_instance_id}: {result.message}'))
        for error in batch.errors:
            self.stdout.write(self.style.ERROR(f'  {error}'))

        self.stdout.write(
            f'{operation}: {batch.succeeded_count} succeeded, {batch.failed_count} failed'
        )

        if not batch.success:
            raise CommandError(f'{batch.failed_count} of {len(options["ids"])} CRFs failed to {operation}')
