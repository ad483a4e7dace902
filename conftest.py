"""
Pytest configuration and fixtures.
"""
import pytest
from django.conf import settings
import django
from django.core.management import call_command


def pytest_configure(config):
    """Configure Django settings for tests."""
    settings.DATABASES['default'] = {
        'ENGINE': 'django.db.backends.sqlite3',
        'NAME': ':memory:',
        'ATOMIC_REQUESTS': False,
    }
    settings.CACHES = {
        'default': {
            'BACKEND': 'django.core.cache.backends.locmem.LocMemCache',
            'LOCATION': 'tests',
        }
    }
    settings.EMAIL_BACKEND = 'django.core.mail.backends.locmem.EmailBackend'
    settings.CELERY_TASK_ALWAYS_EAGER = True
    settings.CELERY_TASK_EAGER_PROPAGATES = True
    django.setup()


@pytest.fixture(scope='session')
def django_db_setup(django_db_setup, django_db_blocker):
    """Set up test database with migrations."""
    with django_db_blocker.unblock():
        call_command('migrate', '--run-syncdb', verbosity=0)


@pytest.fixture(autouse=True)
def clear_cache():
    """Cached effective permissions must not leak between tests."""
    from django.core.cache import cache
    cache.clear()
    yield
    cache.clear()


@pytest.fixture(autouse=True)
def eager_celery():
    """Run tasks inline; the Celery app reads its config once at import."""
    from config.celery import app
    app.conf.task_always_eager = True
    app.conf.task_eager_propagates = True


@pytest.fixture
def api_client():
    """Return DRF API client."""
    from rest_framework.test import APIClient
    return APIClient()


@pytest.fixture
def system_roles(db):
    """Seed the built-in roles and return them by name."""
    from apps.rbac.models import Role
    call_command('seed_roles', verbosity=0)
    return {role.name: role for role in Role.objects.filter(company__isnull=True)}


@pytest.fixture
def company(db):
    """Create a test company."""
    from apps.companies.models import Company
    return Company.objects.create(name='Acme', slug='acme')


@pytest.fixture
def other_company(db):
    """Create another company for isolation tests."""
    from apps.companies.models import Company
    return Company.objects.create(name='Globex', slug='globex')


@pytest.fixture
def office(company):
    from apps.companies.models import Office
    return Office.objects.create(company=company, name='Head Office')


@pytest.fixture
def second_office(company):
    from apps.companies.models import Office
    return Office.objects.create(company=company, name='Branch Office')


@pytest.fixture
def other_office(other_company):
    from apps.companies.models import Office
    return Office.objects.create(company=other_company, name='Globex HQ')


@pytest.fixture
def make_user(db):
    """
    Factory creating a user, optionally as a member of companies.

    Usage:
        user = make_user('a@example.com', companies=[company])
    """
    from apps.rbac.models import CompanyMembership, User

    def _make_user(email, companies=(), password='correct-horse-1', **extra):
        user = User.objects.create_user(email=email, password=password, **extra)
        for member_of in companies:
            CompanyMembership.objects.create(company=member_of, user=user)
        return user

    return _make_user


@pytest.fixture
def make_role(db):
    """Factory creating a company role directly (bypassing the service)."""
    from apps.rbac.models import Role

    def _make_role(company, name, permissions, **extra):
        return Role.objects.create(
            type=Role.TYPE_COMPANY,
            company=company,
            name=name,
            display_name=extra.pop('display_name', name),
            permissions=list(permissions),
            **extra,
        )

    return _make_role


@pytest.fixture
def grant(db):
    """Assign a role to a user within a company."""
    from apps.rbac.models import RoleAssignment

    def _grant(user, role, company):
        return RoleAssignment.objects.create(user=user, role=role, company=company)

    return _grant


@pytest.fixture
def admin_user(make_user, company, system_roles, grant):
    """Company member holding the built-in admin role."""
    user = make_user('admin@acme.test', companies=[company])
    grant(user, system_roles['admin'], company)
    return user


@pytest.fixture
def member(make_user, company):
    """Company member without roles."""
    return make_user('member@acme.test', companies=[company])


@pytest.fixture
def company_client(api_client, company):
    """
    API client bound to a company via the X-COMPANY-ID header.

    Call ``company_client.as_user(user)`` to authenticate.
    """
    api_client.credentials(HTTP_X_COMPANY_ID=str(company.id))

    def as_user(user):
        api_client.force_authenticate(user=user)
        return api_client

    api_client.as_user = as_user
    return api_client
