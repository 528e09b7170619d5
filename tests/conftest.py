# tests/conftest.py
"""
Shared fixtures for the pytest test suite.
Fixtures defined here are automatically available to all tests.

Every test gets a fresh application on an in-memory SQLite database,
seeded with two organizations and one user. Organization 1 matches the
mock user auth_utils provides when LOGIN_DISABLED is set.
"""
import os

import pytest

os.environ['FLASK_ENV'] = 'testing'

from app import create_app  # noqa: E402
from extensions import db  # noqa: E402
from crm_database import Organization  # noqa: E402
from tests.fixtures.factories import OrganizationFactory, UserFactory  # noqa: E402


@pytest.fixture
def app():
    """
    A fixture that creates a new Flask application instance with a clean
    in-memory database for each test.
    """
    app = create_app(config_name='testing', test_config={
        'SERVER_NAME': 'localhost.localdomain'  # Required for url_for in tests
    })

    with app.app_context():
        db.create_all()

        # --- Seeding the database with test data ---
        OrganizationFactory(id=1, name='Test Organization')
        OrganizationFactory(id=2, name='Other Organization')
        UserFactory(id=1, email='test@example.com', name='Test User', organization_id=1)

        yield app

        # --- Teardown ---
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    """A test client for the Flask application."""
    return app.test_client()


@pytest.fixture
def db_session(app):
    """The application's session, bound to the test database."""
    return db.session


@pytest.fixture
def organization(db_session):
    return db_session.get(Organization, 1)


@pytest.fixture
def import_service(app):
    """ContactImportService wired to the real repositories"""
    return app.services.get('contact_import')
