from datetime import datetime, timezone as dt_timezone

import pytest
from rest_framework.test import APIClient

from accounts.permissions import ADMIN, DONOR, RECIPIENT, ActingUser
from bloodrequests import lifecycle
from store.base import get_store, reset_store

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=dt_timezone.utc)


@pytest.fixture(autouse=True)
def store(settings):
    """A fresh in-memory store for every test."""
    settings.DOCUMENT_STORE = {'BACKEND': 'store.memory.MemoryStore', 'OPTIONS': {}}
    reset_store()
    yield get_store()
    reset_store()


@pytest.fixture
def make_user(store):
    def make(user_id, blood_type='O+', role=DONOR, location=None, **fields):
        profile = {
            'email': f"{user_id}@example.com",
            'full_name': user_id.title(),
            'phone_number': '+9779800000000',
            'blood_type': blood_type,
            'date_of_birth': '1990-01-01',
            'gender': 'male',
            'address': None,
            'location': location,
            'role': role,
            'notification_preferences': {'email': True, 'push': True, 'sms': False},
            'fcm_tokens': [],
            'medical_info': {},
            'last_donation_date': None,
            'active': True,
            'created_at': NOW,
            'updated_at': NOW,
        }
        profile.update(fields)
        store.set('users', user_id, profile)
        return store.get('users', user_id)
    return make


@pytest.fixture
def make_request(store):
    def make(user_id='recipient', now=None, **fields):
        data = {
            'patient_name': 'Ram Bahadur',
            'blood_type': 'A+',
            'units': 2,
            'hospital': 'Bir Hospital',
            'urgency': 'high',
        }
        data.update(fields)
        document = lifecycle.new_request(data, user_id, now=now or NOW)
        return store.add('blood_requests', document)
    return make


@pytest.fixture
def donor():
    return ActingUser('donor', DONOR)


@pytest.fixture
def recipient():
    return ActingUser('recipient', RECIPIENT)


@pytest.fixture
def admin():
    return ActingUser('admin', ADMIN)


@pytest.fixture
def api_client():
    return APIClient()


@pytest.fixture
def client_for():
    def build(acting_user):
        client = APIClient()
        client.force_authenticate(user=acting_user)
        return client
    return build
