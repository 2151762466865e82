"""
Project-wide pytest setup.

Settings come from config.settings; app fixtures live in each app's
tests/conftest.py. Tests are marked unit/integration/e2e by file name so
``pytest -m unit`` skips the service and API suites.
"""

import os

import django
import pytest

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

E2E_FILES = {"test_integration.py"}

UNIT_FILES = {
    "test_calculator.py",
    "test_status.py",
    "test_locks.py",
    "test_stripe_adapter.py",
    "test_notifier.py",
    "test_conf.py",
    "test_models.py",
}

LEVELS = {"unit", "integration", "e2e"}


def pytest_configure():
    django.setup()

    from django.conf import settings

    # The default PBKDF2 hasher makes every factory user slow to create
    settings.PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.CELERY_TASK_ALWAYS_EAGER = True


def pytest_collection_modifyitems(items):
    """
    Mark each test by its file name unless it already has a level marker.

    Anything not listed as unit or e2e is an integration test.
    """
    for item in items:
        if LEVELS & {m.name for m in item.iter_markers()}:
            continue

        filename = item.path.name
        if filename in E2E_FILES:
            item.add_marker(pytest.mark.e2e)
        elif filename in UNIT_FILES:
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
