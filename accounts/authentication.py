# accounts/authentication.py
"""
Firebase ID-token authentication for DRF.

Mobile clients sign in with Firebase and send the ID token as a bearer
token. Tokens that are not Firebase ID tokens are left for the next
authentication class (simplejwt) to handle.
"""
import logging

from firebase_admin import auth
from rest_framework import authentication, exceptions

from accounts.permissions import ActingUser
from redblood.firebase import get_firebase_app
from store.base import get_store

logger = logging.getLogger(__name__)


class FirebaseAuthentication(authentication.BaseAuthentication):
    keyword = 'Bearer'

    def authenticate(self, request):
        header = authentication.get_authorization_header(request).split()
        if not header or header[0].lower() != self.keyword.lower().encode():
            return None
        if len(header) != 2:
            raise exceptions.AuthenticationFailed('Invalid Authorization header')

        token = header[1].decode()
        try:
            decoded = auth.verify_id_token(token, app=get_firebase_app())
        except (auth.InvalidIdTokenError, ValueError):
            logger.debug('Bearer token is not a Firebase ID token')
            return None
        except auth.UserDisabledError:
            raise exceptions.AuthenticationFailed('The user belonging to this token has been disabled.')
        except auth.CertificateFetchError:
            logger.exception('Could not fetch Firebase public keys')
            raise exceptions.AuthenticationFailed('Authentication is temporarily unavailable')

        role = decoded.get('role')
        if not role:
            profile = get_store().get('users', decoded['uid'])
            role = profile.get('role') if profile else None
        return ActingUser(decoded['uid'], role), decoded

    def authenticate_header(self, request):
        return self.keyword
