# Recalculate Ratings Management Command
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db.models import Avg, Count

from marketplace.models import User, Service, Review


class Command(BaseCommand):
    help = 'Recalculates service and guide ratings from published reviews.'

    def add_arguments(self, parser):
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='Run the command without saving changes to the database.',
        )
        parser.add_argument(
            '--services-only',
            action='store_true',
            help='Recalculate only service ratings.',
        )
        parser.add_argument(
            '--users-only',
            action='store_true',
            help='Recalculate only guide ratings.',
        )
        parser.add_argument(
            '--batch-size',
            type=int,
            default=1000,
            help='Batch size for bulk processing.',
        )

    def handle(self, *args, **options):
        dry_run = options['dry_run']
        batch_size = options['batch_size']

        if not options['users_only']:
            self.recalculate_services(dry_run, batch_size)

        if not options['services_only']:
            self.recalculate_guides(dry_run, batch_size)

        if dry_run:
            self.stdout.write(self.style.SUCCESS('Dry run completed. No changes saved.'))
        else:
            self.stdout.write(self.style.SUCCESS('Recalculation completed successfully.'))

    @staticmethod
    def _as_rating(raw):
        if raw is None:
            return Decimal('0.00')
        return Decimal(str(raw)).quantize(Decimal('0.01'))

    def recalculate_services(self, dry_run, batch_size):
        self.stdout.write('Recalculating service ratings...')
        updates = []
        count = 0

        for service in Service.objects.all().iterator(chunk_size=batch_size):
            stats = Review.objects.filter(service=service, status='PUBLISHED').aggregate(
                avg_rating=Avg('rating'),
                total=Count('id')
            )
            new_avg = self._as_rating(stats['avg_rating'])
            new_total = stats['total'] or 0

            if abs(service.average_rating - new_avg) > Decimal('0.001') or service.total_reviews != new_total:
                if dry_run:
                    self.stdout.write(
                        f'  [DRY-RUN] Service {service.id} ({service.title}): '
                        f'Rating {service.average_rating} -> {new_avg}, '
                        f'Count {service.total_reviews} -> {new_total}'
                    )
                service.average_rating = new_avg
                service.total_reviews = new_total
                updates.append(service)

            if len(updates) >= batch_size:
                if not dry_run:
                    Service.objects.bulk_update(updates, ['average_rating', 'total_reviews'])
                updates = []

            count += 1
            if count % 100 == 0:
                self.stdout.write(f'Processed {count} services...')

        if updates and not dry_run:
            Service.objects.bulk_update(updates, ['average_rating', 'total_reviews'])

        self.stdout.write(f'Processed {count} services total.')

    def recalculate_guides(self, dry_run, batch_size):
        self.stdout.write('Recalculating guide ratings...')
        updates = []
        count = 0

        guides = User.objects.filter(role__in=[User.ROLE_GUIDE, User.ROLE_ADMIN])
        for user in guides.iterator(chunk_size=batch_size):
            raw = Review.objects.filter(guide=user, status='PUBLISHED').aggregate(avg=Avg('rating'))['avg']
            new_avg = self._as_rating(raw)

            if abs(user.avg_rating_as_guide - new_avg) > Decimal('0.001'):
                if dry_run:
                    self.stdout.write(
                        f'  [DRY-RUN] User {user.id} (Guide): Rating {user.avg_rating_as_guide} -> {new_avg}'
                    )
                user.avg_rating_as_guide = new_avg
                updates.append(user)

            if len(updates) >= batch_size:
                if not dry_run:
                    User.objects.bulk_update(updates, ['avg_rating_as_guide'])
                updates = []

            count += 1
            if count % 100 == 0:
                self.stdout.write(f'Processed {count} guides...')

        if updates and not dry_run:
            User.objects.bulk_update(updates, ['avg_rating_as_guide'])

        self.stdout.write(f'Processed {count} guides total.')
