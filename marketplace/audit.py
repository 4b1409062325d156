import logging

from .models import ActivityLog

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """
    Get client IP address from request.
    Handles proxy headers for accurate IP detection.
    """
    if request is None:
        return None
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def record_activity(request, action, entity=None, description='', metadata=None, actor=None):
    """
    Append an activity log entry.

    `entity` may be a model instance; its class name and primary key are
    stored. The actor defaults to the request user.
    """
    if actor is None and request is not None and request.user.is_authenticated:
        actor = request.user

    entry = ActivityLog.objects.create(
        actor=actor,
        action=action,
        entity_type=entity.__class__.__name__ if entity is not None else '',
        entity_id=str(entity.pk) if entity is not None else '',
        description=description[:300],
        metadata=metadata or {},
        ip_address=get_client_ip(request),
    )
    logger.info(
        f"Activity recorded. Action: {action}, "
        f"Entity: {entry.entity_type}#{entry.entity_id}, "
        f"Actor: {actor.email if actor else 'system'}"
    )
    return entry
