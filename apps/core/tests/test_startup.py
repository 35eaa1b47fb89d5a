"""
Tests that run Django start-up in a fresh interpreter.

Import order problems only show when nothing has been imported yet, so
these tests cannot reuse the already configured test process.
"""
import os
import subprocess
import sys
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parents[3]


def run_fresh(code, **env_overrides):
    env = {
        key: value for key, value in os.environ.items()
        if key not in ('REDIS_URL', 'CELERY_BROKER_URL', 'CELERY_TASK_ALWAYS_EAGER')
    }
    env.update({
        'DJANGO_SETTINGS_MODULE': 'config.settings',
        'DEBUG': 'True',
        'SECRET_KEY': 'Zr4p9Qk2Lw8Xv6Tn1Bc7Hm3Jd5Fg0Sa-Ue_Yi4Oo9Pl2Kq8Wx6Rz3Nv7Mb1Tc5',
        'JWT_SECRET_KEY': 'q8Zt3vN1xR6pL0mK4wY7bC2dF9gH5jS-aE_u',
    })
    env.update(env_overrides)
    return subprocess.run(
        [sys.executable, '-c', code],
        cwd=PROJECT_ROOT,
        env=env,
        capture_output=True,
        text=True,
        timeout=120,
    )


class TestStartup:

    def test_setup_configures_logging_with_request_context_filter(self):
        result = run_fresh(
            "import django\n"
            "django.setup()\n"
            "import logging\n"
            "from apps.core.middleware import LoggingFilter\n"
            "handler = logging.getLogger('apps').handlers[0]\n"
            "assert any(isinstance(f, LoggingFilter) for f in handler.filters)\n"
            "print('ok')\n"
        )

        assert result.returncode == 0, result.stderr
        assert result.stdout.strip().endswith('ok')

    @pytest.mark.parametrize('first_import', [
        'apps.core.exceptions',
        'apps.rbac.services',
        'apps.core.permissions',
    ])
    def test_modules_import_first_in_a_fresh_process(self, first_import):
        result = run_fresh(
            "import django\n"
            "django.setup()\n"
            f"import {first_import}\n"
            "from django.core.management import load_command_class\n"
            "load_command_class('apps.rbac', 'seed_roles')\n"
            "print('ok')\n"
        )

        assert result.returncode == 0, result.stderr
        assert result.stdout.strip().endswith('ok')


class TestCeleryDefaults:

    def test_runs_tasks_in_process_without_a_broker(self):
        result = run_fresh(
            "import django\n"
            "django.setup()\n"
            "from config.celery import app\n"
            "print(app.conf.task_always_eager)\n"
        )

        assert result.returncode == 0, result.stderr
        assert result.stdout.strip().splitlines()[-1] == 'True'

    def test_queues_tasks_when_a_broker_is_configured(self):
        result = run_fresh(
            "import django\n"
            "django.setup()\n"
            "from config.celery import app\n"
            "print(app.conf.task_always_eager)\n",
            CELERY_BROKER_URL='redis://localhost:6379/0',
        )

        assert result.returncode == 0, result.stderr
        assert result.stdout.strip().splitlines()[-1] == 'False'

    def test_eager_off_without_a_broker_is_rejected(self):
        result = run_fresh(
            "import django\n"
            "django.setup()\n",
            CELERY_TASK_ALWAYS_EAGER='False',
        )

        assert result.returncode != 0
        assert 'CELERY_BROKER_URL' in result.stderr
