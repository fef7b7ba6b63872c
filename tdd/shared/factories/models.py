"""
Model factories for creating test data.

These factories create SQLAlchemy model instances for use in tests.
They can be used directly in unit tests or with database sessions
in integration tests.
"""
from datetime import datetime

import factory
from faker import Faker

from gitops_repo.models import GitRepository, GitSecret, SecretType

from .base import BaseFactory, generate_namespace, generate_remote_url, generate_uuid

fake = Faker()


class GitRepositoryFactory(BaseFactory):
    """Factory for creating GitRepository instances."""

    class Meta:
        model = GitRepository

    id = factory.LazyFunction(generate_uuid)
    namespace = factory.LazyFunction(generate_namespace)
    name = factory.LazyFunction(lambda: fake.slug())
    url = factory.LazyFunction(generate_remote_url)
    secret_name = factory.LazyFunction(lambda: f"{fake.word()}-credentials")
    secret_namespace = None
    public = False
    insecure_skip_tls = False
    ca_bundle = None
    created_at = factory.LazyFunction(datetime.utcnow)

    class Params:
        """Parameters for creating repositories in specific states."""

        public_repo = factory.Trait(
            public=True,
            secret_name=None,
        )
        self_signed = factory.Trait(
            insecure_skip_tls=True,
        )


class GitSecretFactory(BaseFactory):
    """Factory for creating GitSecret instances."""

    class Meta:
        model = GitSecret

    id = factory.LazyFunction(generate_uuid)
    namespace = factory.LazyFunction(generate_namespace)
    name = factory.LazyFunction(lambda: f"{fake.word()}-credentials")
    type = SecretType.BASIC_AUTH.value
    data = factory.LazyFunction(lambda: {"username": fake.user_name(), "password": fake.password()})
    author_name = factory.LazyFunction(lambda: fake.name())
    author_email = factory.LazyFunction(lambda: fake.email())
    created_at = factory.LazyFunction(datetime.utcnow)

    class Params:
        """Parameters for creating secrets of each type."""

        opaque = factory.Trait(
            type=SecretType.OPAQUE.value,
            data=factory.LazyFunction(lambda: {"token": fake.sha1()}),
        )
        secret_text = factory.Trait(
            type=SecretType.SECRET_TEXT.value,
            data=factory.LazyFunction(lambda: {"secret": fake.sha1()}),
        )
