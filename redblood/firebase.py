# redblood/firebase.py
"""
Shared firebase-admin app for Firestore, FCM and ID-token checks
"""
import logging

import firebase_admin
from django.conf import settings
from firebase_admin import credentials

logger = logging.getLogger(__name__)


def get_firebase_app():
    """Return the default firebase app, initialising it on first use."""
    if firebase_admin._apps:
        return firebase_admin.get_app()

    cred_path = getattr(settings, 'FIREBASE_CREDENTIALS', None)
    if cred_path:
        cred = credentials.Certificate(cred_path)
    else:
        cred = credentials.ApplicationDefault()

    options = {}
    project_id = getattr(settings, 'FIREBASE_PROJECT_ID', None)
    if project_id:
        options['projectId'] = project_id

    app = firebase_admin.initialize_app(cred, options or None)
    logger.info(f"Firebase app initialised (project={project_id or 'default'})")
    return app
