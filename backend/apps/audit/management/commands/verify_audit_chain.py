"""
Verify the integrity of the hash-chained audit trail.

Usage:
    python manage.py verify_audit_chain
"""

from django.core.management.base import BaseCommand, CommandError
from apps.audit.services import AuditRecorder


class Command(BaseCommand):
    help = 'Verify the audit trail hash chain'

    def handle(self, *args, **options):
        result = AuditRecorder().verify_chain_integrity()

        self.stdout.write(f"Events checked: {result['total_events']}")

        for link in result['broken_links']:
            self.stdout.write(self.style.ERROR(
                f"  Broken link at audit event {link['audit_id']}"
            ))
        for event in result['tampered_events']:
            self.stdout.write(self.style.ERROR(
                f"  Tampered audit event {event['audit_id']}: {event['reason']}"
            ))

        if not result['is_valid']:
            raise CommandError('Audit chain verification failed')

        self.stdout.write(self.style.SUCCESS('Audit chain intact'))
