"""
Unit tests for GitRepoFactory - resolves repositories to local clones.

These tests verify:
- Descriptor validation (URL and secret requirements)
- Credential handling per secret type and author fallback
- Deterministic clone locations
- Clone-once, reopen-afterwards behavior
- Clone removal
"""
import os
from unittest.mock import patch

import pytest
from dulwich import porcelain

from gitops_repo.services.errors import InvalidSpecError, NotFoundError, RepositoryOpenError
from gitops_repo.services.git_repo_factory import (
    CloneArena,
    GitRepoFactory,
    get_repo_dir,
    token_from_credential,
)
from gitops_repo.services.git_repo_service import GitRepoService
from gitops_repo.services.stores import RepositoryDescriptor, SecretRef

from shared.mocks import (
    MockCredentialStore,
    MockDescriptorStore,
    basic_auth,
    opaque_token,
    secret_text,
)

NAMESPACE = "team-a"
SECRET = SecretRef(namespace=NAMESPACE, name="deploy-credentials")


@pytest.fixture
def descriptors(remote):
    return MockDescriptorStore(
        RepositoryDescriptor(namespace=NAMESPACE, name="deploys", url=remote.url, secret_ref=SECRET),
    )


@pytest.fixture
def credentials():
    return MockCredentialStore({SECRET: basic_auth("bot", "pw", author_name="Deploy Bot",
                                                   author_email="bot@example.com")})


@pytest.fixture
def arena():
    area = CloneArena()
    yield area
    area.close()


@pytest.fixture
def factory(descriptors, credentials, settings, arena):
    return GitRepoFactory(descriptors, credentials, settings=settings, arena=arena)


# -----------------------------------------------------------------------------
# Clone Location
# -----------------------------------------------------------------------------

class TestGetRepoDir:
    """Tests for get_repo_dir()."""

    @pytest.mark.parametrize("url,expected", [
        ("https://github.com/org/deploys.git", "/gitops/ns/github.com/org/deploys.git"),
        ("http://git.local:8080/org/deploys", "/gitops/ns/git.local/8080/org/deploys"),
        ("git@github.com:org/deploys.git", "/gitops/ns/github.com/org/deploys.git"),
        ("/srv/git/deploys.git", "/gitops/ns/srv/git/deploys.git"),
    ])
    def test_url_maps_under_namespace(self, url, expected):
        assert get_repo_dir("/gitops", "ns", url) == expected

    def test_empty_root_uses_default(self):
        assert get_repo_dir("", "ns", "https://h/r.git") == "/gitops/ns/h/r.git"

    def test_same_url_different_namespace(self):
        url = "https://github.com/org/deploys.git"
        assert get_repo_dir("/gitops", "a", url) != get_repo_dir("/gitops", "b", url)

    def test_url_escaping_root_rejected(self):
        with pytest.raises(InvalidSpecError):
            get_repo_dir("/gitops", "ns", "https://../../etc")


# -----------------------------------------------------------------------------
# Credentials
# -----------------------------------------------------------------------------

class TestTokenFromCredential:
    def test_basic_auth(self):
        assert token_from_credential(basic_auth("bot", "pw")) == ("pw", "bot")

    def test_opaque_token(self):
        assert token_from_credential(opaque_token("tok")) == ("tok", "")

    def test_secret_text(self):
        assert token_from_credential(secret_text("txt")) == ("txt", "")


class TestGetDescriptor:
    async def test_valid_descriptor(self, factory, remote):
        descriptor = await factory.get_descriptor(NAMESPACE, "deploys")
        assert descriptor.url == remote.url

    async def test_unknown_repository(self, factory):
        with pytest.raises(NotFoundError):
            await factory.get_descriptor(NAMESPACE, "missing")

    async def test_missing_url(self, factory, descriptors):
        descriptors.add(RepositoryDescriptor(namespace=NAMESPACE, name="no-url", secret_ref=SECRET))
        with pytest.raises(InvalidSpecError):
            await factory.get_descriptor(NAMESPACE, "no-url")

    async def test_missing_secret_on_private_repository(self, factory, descriptors, remote):
        descriptors.add(RepositoryDescriptor(namespace=NAMESPACE, name="private", url=remote.url))
        with pytest.raises(InvalidSpecError):
            await factory.get_descriptor(NAMESPACE, "private")

    async def test_public_repository_needs_no_secret(self, factory, descriptors, remote):
        descriptors.add(RepositoryDescriptor(namespace=NAMESPACE, name="public", url=remote.url, public=True))
        descriptor = await factory.get_descriptor(NAMESPACE, "public")
        assert descriptor.secret_ref is None


class TestGetAuth:
    async def test_basic_auth_credentials(self, factory):
        descriptor = await factory.get_descriptor(NAMESPACE, "deploys")
        auth = await factory.get_auth(descriptor, "alice")

        assert auth.username == "bot"
        assert auth.secret == "pw"
        assert auth.author.name == "Deploy Bot"
        assert auth.author.email == "bot@example.com"

    async def test_token_credential_uses_caller_as_username(self, factory, credentials):
        credentials.add(SECRET, opaque_token("tok"))
        descriptor = await factory.get_descriptor(NAMESPACE, "deploys")

        auth = await factory.get_auth(descriptor, "alice")

        assert auth.username == "alice"
        assert auth.secret == "tok"

    async def test_author_name_falls_back_to_username(self, factory, credentials):
        credentials.add(SECRET, secret_text("txt"))
        descriptor = await factory.get_descriptor(NAMESPACE, "deploys")

        auth = await factory.get_auth(descriptor, "alice")

        assert auth.author.name == "alice"
        assert auth.author.email == ""

    async def test_empty_token_rejected(self, factory, credentials):
        credentials.add(SECRET, basic_auth("bot", ""))
        descriptor = await factory.get_descriptor(NAMESPACE, "deploys")
        with pytest.raises(InvalidSpecError):
            await factory.get_auth(descriptor, "alice")

    async def test_missing_secret_propagates_not_found(self, factory, credentials):
        credentials.credentials.clear()
        descriptor = await factory.get_descriptor(NAMESPACE, "deploys")
        with pytest.raises(NotFoundError):
            await factory.get_auth(descriptor, "alice")

    async def test_tls_options_carried(self, factory, descriptors, remote):
        descriptors.add(RepositoryDescriptor(
            namespace=NAMESPACE, name="self-signed", url=remote.url, public=True,
            insecure_skip_tls=True, ca_bundle=b"-----BEGIN CERTIFICATE-----",
        ))
        descriptor = await factory.get_descriptor(NAMESPACE, "self-signed")

        auth = await factory.get_auth(descriptor, "alice")

        assert auth.insecure_skip_tls
        assert auth.ca_bundle == b"-----BEGIN CERTIFICATE-----"
        assert auth.secret == ""


# -----------------------------------------------------------------------------
# Resolve and Service Construction
# -----------------------------------------------------------------------------

class TestResolve:
    async def test_first_resolve_clones(self, factory, settings, remote):
        clone = await factory.resolve(NAMESPACE, "deploys", "alice")

        assert clone.local_path == get_repo_dir(settings.root_dir, NAMESPACE, remote.url)
        assert os.path.isdir(os.path.join(clone.local_path, ".git"))
        assert os.path.exists(os.path.join(clone.local_path, "README.md"))
        assert clone.remote_url == remote.url

    async def test_second_resolve_reuses_clone(self, factory):
        with patch.object(porcelain, "clone", wraps=porcelain.clone) as clone_spy:
            first = await factory.resolve(NAMESPACE, "deploys", "alice")
            second = await factory.resolve(NAMESPACE, "deploys", "bob")

        assert clone_spy.call_count == 1
        assert first.local_path == second.local_path
        assert first.lock is second.lock

    async def test_non_repository_directory_fails_to_open(self, factory, settings, remote):
        path = get_repo_dir(settings.root_dir, NAMESPACE, remote.url)
        os.makedirs(path)

        with pytest.raises(RepositoryOpenError):
            await factory.resolve(NAMESPACE, "deploys", "alice")

    async def test_failed_clone_leaves_no_directory(self, factory, descriptors, settings, tmp_path):
        missing = str(tmp_path / "does-not-exist.git")
        descriptors.add(RepositoryDescriptor(namespace=NAMESPACE, name="broken", url=missing, public=True))

        with pytest.raises(Exception):
            await factory.resolve(NAMESPACE, "broken", "alice")

        assert not os.path.exists(get_repo_dir(settings.root_dir, NAMESPACE, missing))

    async def test_new_repo_service(self, factory, arena):
        service = await factory.new_repo_service(NAMESPACE, "deploys", "alice")
        try:
            assert isinstance(service, GitRepoService)
            assert service.auth.username == "bot"
            assert service.staging is arena.staging_for(service.clone.local_path, factory.settings)
        finally:
            service.close()


class TestDeleteClone:
    async def test_delete_clone_removes_directory(self, factory):
        clone = await factory.resolve(NAMESPACE, "deploys", "alice")

        await factory.delete_clone(NAMESPACE, "deploys")

        assert not os.path.exists(clone.local_path)

    async def test_delete_missing_clone_is_noop(self, factory):
        await factory.delete_clone(NAMESPACE, "deploys")

    async def test_resolve_after_delete_clones_again(self, factory):
        await factory.resolve(NAMESPACE, "deploys", "alice")
        await factory.delete_clone(NAMESPACE, "deploys")

        clone = await factory.resolve(NAMESPACE, "deploys", "alice")
        assert os.path.exists(os.path.join(clone.local_path, "README.md"))
