import logging
from datetime import timedelta

from django.core.management.base import BaseCommand, CommandError
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from marketplace.models import Booking, Service
from marketplace.notifications import notify_booking_completed

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Marks confirmed bookings as completed once their end time has passed.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--grace-hours',
            type=int,
            default=2,
            help='Hours after the scheduled end before a booking is completed automatically.',
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List the bookings that would be completed without changing them.',
        )

    def handle(self, *args, **options):
        grace_hours = options['grace_hours']
        if grace_hours < 0:
            raise CommandError('--grace-hours must not be negative.')

        cutoff = timezone.now() - timedelta(hours=grace_hours)
        due = Booking.objects.filter(status='CONFIRMED', end_time__lte=cutoff).select_related(
            'service', 'traveler', 'guide'
        )

        completed = 0
        for booking in due:
            if options['dry_run']:
                self.stdout.write(f'  [DRY-RUN] Booking {booking.id} ended at {booking.end_time}')
                continue

            with transaction.atomic():
                locked = Booking.objects.select_for_update().get(pk=booking.pk)
                if locked.status != 'CONFIRMED':
                    continue
                locked.status = 'COMPLETED'
                locked.completed_at = timezone.now()
                locked.save()
                Service.objects.filter(pk=locked.service_id).update(total_bookings=F('total_bookings') + 1)

            notify_booking_completed(locked)
            logger.info(f"Booking auto-completed. Booking ID: {locked.id}")
            completed += 1

        if options['dry_run']:
            self.stdout.write(self.style.SUCCESS(f'Dry run completed. {due.count()} booking(s) due.'))
        else:
            self.stdout.write(self.style.SUCCESS(f'Completed {completed} booking(s).'))
