"""
Page/limit pagination used by list endpoints.
"""

import math

from django.core.paginator import EmptyPage, Paginator
from django.utils.translation import gettext as _
from rest_framework.exceptions import NotFound, ValidationError


def parse_positive_int(value, name, default=None, maximum=None):
    """
    Parse a query parameter as a positive integer.

    Raises:
        ValidationError: If the value is not a positive integer
    """
    if value in (None, ''):
        return default
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError({name: [_('Must be a positive integer.')]})
    if number < 1:
        raise ValidationError({name: [_('Must be a positive integer.')]})
    if maximum is not None:
        number = min(number, maximum)
    return number


def paginate(request, queryset, default_limit=20, max_limit=100):
    """
    Slice a queryset (or list) by `page` and `limit` query parameters.

    Returns:
        tuple: (items for the page, pagination dict)

    Raises:
        ValidationError: For malformed page/limit values
        NotFound: For a page past the end (page 1 of an empty result is fine)
    """
    page_number = parse_positive_int(request.query_params.get('page'), 'page', default=1)
    limit = parse_positive_int(request.query_params.get('limit'), 'limit', default=default_limit, maximum=max_limit)

    paginator = Paginator(queryset, limit, allow_empty_first_page=True)
    try:
        page = paginator.page(page_number)
    except EmptyPage:
        raise NotFound(_('Invalid page.'))

    total = paginator.count
    pagination = {
        'page': page_number,
        'limit': limit,
        'total': total,
        'total_pages': math.ceil(total / limit) if total else 0,
        'has_next': page.has_next(),
        'has_prev': page.has_previous(),
    }
    return list(page.object_list), pagination
