"""
Django signals for profile creation and automatic rating recalculation.

Ratings only count PUBLISHED reviews. Service ratings and the guide's
avg_rating_as_guide are recomputed whenever a review is saved or deleted,
so hiding a review through moderation also updates the averages.
"""

import logging
from decimal import Decimal

from django.db import transaction
from django.db.models import Avg, Count
from django.db.models.signals import post_save, post_delete
from django.dispatch import receiver

from .models import Review, Service, User, UserProfile

logger = logging.getLogger(__name__)


def _to_rating(value):
    if value is None:
        return Decimal('0.00')
    return Decimal(str(value)).quantize(Decimal('0.01'))


def recalculate_service_rating(service_id):
    """
    Recompute a service's average rating and review count under a row lock.

    Returns:
        Service: The updated service
    """
    service = Service.objects.select_for_update().get(pk=service_id)
    stats = Review.objects.filter(service_id=service_id, status='PUBLISHED').aggregate(
        avg=Avg('rating'),
        total=Count('id'),
    )
    # update() skips Service.full_clean(), which would re-validate unrelated fields
    Service.objects.filter(pk=service_id).update(
        average_rating=_to_rating(stats['avg']),
        total_reviews=stats['total'] or 0,
    )
    return service


def recalculate_guide_rating(guide_id):
    user = User.objects.select_for_update().get(pk=guide_id)
    avg_rating = Review.objects.filter(guide_id=guide_id, status='PUBLISHED').aggregate(
        avg=Avg('rating')
    )['avg']
    user.avg_rating_as_guide = _to_rating(avg_rating)
    user.save(update_fields=['avg_rating_as_guide'])
    return user


@receiver(post_save, sender=User)
def create_user_profile(sender, instance, created, **kwargs):
    if created:
        UserProfile.objects.get_or_create(user=instance)


@receiver(post_save, sender=Review)
def update_ratings_on_review_save(sender, instance, created, **kwargs):
    """
    Recalculate service and guide ratings after a review is created or updated.

    Runs inside the caller's transaction; a failure here re-raises so the
    review write rolls back with it.
    """
    try:
        with transaction.atomic():
            recalculate_service_rating(instance.service_id)
            recalculate_guide_rating(instance.guide_id)

            action = "created" if created else "updated"
            logger.info(
                f"Updated ratings for review {instance.id} ({action}): "
                f"service={instance.service_id}, guide={instance.guide_id}, rating={instance.rating}"
            )
    except Exception as e:
        logger.error(
            f"Error updating ratings for review {instance.id}: {e}",
            exc_info=True
        )
        raise


@receiver(post_delete, sender=Review)
def update_ratings_on_review_delete(sender, instance, **kwargs):
    """
    Recalculate ratings without the deleted review. With no reviews left the
    averages fall back to 0.00.
    """
    try:
        with transaction.atomic():
            if Service.objects.filter(pk=instance.service_id).exists():
                recalculate_service_rating(instance.service_id)
            if User.objects.filter(pk=instance.guide_id).exists():
                recalculate_guide_rating(instance.guide_id)

            logger.info(
                f"Updated ratings after deleting review {instance.id}: "
                f"service={instance.service_id}, guide={instance.guide_id}"
            )
    except Exception as e:
        logger.error(
            f"Error updating ratings after deleting review {instance.id}: {e}",
            exc_info=True
        )
        raise
