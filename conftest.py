"""
Pytest configuration for Django tests.

pytest-django reads DJANGO_SETTINGS_MODULE from pyproject.toml; the default
here covers runs that bypass it.
"""
import os

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'checkout_core.settings')
