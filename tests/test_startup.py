import os
import subprocess
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent


def run_fresh(code):
    env = {**os.environ, 'DJANGO_SETTINGS_MODULE': 'redblood.settings', 'REDBLOOD_FIREBASE_AUTH': 'true'}
    return subprocess.run(
        [sys.executable, '-c', code],
        cwd=ROOT, env=env, capture_output=True, text=True, timeout=120,
    )


def test_django_setup_loads_authentication_classes():
    result = run_fresh(
        'import django; django.setup(); '
        'from rest_framework.views import APIView; '
        'print(",".join(cls.__name__ for cls in APIView.authentication_classes))'
    )
    assert result.returncode == 0, result.stderr
    assert result.stdout.strip() == 'FirebaseAuthentication,JWTStatelessUserAuthentication'


def test_url_configuration_imports():
    result = run_fresh('import django; django.setup(); import redblood.urls, redblood.wsgi')
    assert result.returncode == 0, result.stderr
