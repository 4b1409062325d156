"""
JWT authentication that accepts either the Authorization header or the
auth cookie set at login.
"""

import logging

from django.conf import settings
from rest_framework.exceptions import AuthenticationFailed
from rest_framework_simplejwt.authentication import JWTAuthentication
from rest_framework_simplejwt.exceptions import InvalidToken
from rest_framework_simplejwt.tokens import RefreshToken

logger = logging.getLogger(__name__)


def auth_cookie_name():
    return settings.AUTH_COOKIE['NAME']


class CookieJWTAuthentication(JWTAuthentication):
    """
    Look for a Bearer token in the Authorization header first, then fall back
    to the `auth-token` cookie used by the web client.

    A bad header token fails the request. A bad cookie (expired, forged, or
    belonging to a deactivated user) leaves the request anonymous, so public
    endpoints still answer and logout can clear the cookie.
    """

    def authenticate(self, request):
        header = self.get_header(request)
        if header is not None:
            raw_token = self.get_raw_token(header)
            if raw_token is None:
                return None
            validated_token = self.get_validated_token(raw_token)
            return self.get_user(validated_token), validated_token

        raw_token = request.COOKIES.get(auth_cookie_name())
        if not raw_token:
            return None

        try:
            validated_token = self.get_validated_token(raw_token.encode('utf-8'))
            return self.get_user(validated_token), validated_token
        except (InvalidToken, AuthenticationFailed) as e:
            logger.info(f"Ignoring invalid auth cookie. Error: {e}")
            return None


def issue_tokens(user):
    """
    Create a refresh/access pair carrying the user's role and email.

    Returns:
        dict: {'access': str, 'refresh': str}
    """
    refresh = RefreshToken.for_user(user)
    refresh['role'] = user.role
    refresh['email'] = user.email
    access = refresh.access_token
    return {
        'access': str(access),
        'refresh': str(refresh),
    }


def set_auth_cookie(response, access_token):
    cookie = settings.AUTH_COOKIE
    response.set_cookie(
        cookie['NAME'],
        access_token,
        max_age=int(settings.SIMPLE_JWT['ACCESS_TOKEN_LIFETIME'].total_seconds()),
        secure=cookie['SECURE'],
        httponly=cookie['HTTP_ONLY'],
        samesite=cookie['SAMESITE'],
        path=cookie['PATH'],
    )
    return response


def clear_auth_cookie(response):
    cookie = settings.AUTH_COOKIE
    response.delete_cookie(cookie['NAME'], path=cookie['PATH'], samesite=cookie['SAMESITE'])
    return response
