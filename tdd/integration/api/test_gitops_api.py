"""
Integration tests for git operation endpoints.

A repository is registered against the ``remote`` fixture (a bare
repository on disk), so every request goes through the real factory,
clone and service stack.
"""
import base64
import os

import pytest_asyncio

from gitops_repo.services.git_repo_factory import get_repo_dir

from shared.assertions import (
    assert_deleted_response,
    assert_gitops_error,
    assert_not_found,
    assert_status_code,
    assert_validation_error,
)
from shared.factories import (
    add_files_payload,
    encode_path,
    file_payload,
    git_repository_create_payload,
    secret_create_payload,
)

NAMESPACE_URL = "/api/v1alpha3/namespaces/team-a"
REPO_URL = f"{NAMESPACE_URL}/gitrepositories/deploys"


@pytest_asyncio.fixture
async def registered(client, remote):
    """Register the remote as team-a/deploys."""
    response = await client.post(f"{NAMESPACE_URL}/gitrepositories", json=git_repository_create_payload(
        name="deploys", url=remote.url, public=True,
    ))
    assert response.status_code == 201, f"Failed to register repository: {response.text}"
    return response.json()


# -----------------------------------------------------------------------------
# Repository Resolution
# -----------------------------------------------------------------------------

class TestRepositoryResolution:
    async def test_unknown_repository(self, client):
        response = await client.get(f"{NAMESPACE_URL}/gitrepositories/missing/branches")
        assert_not_found(response, "missing")

    async def test_private_repository_without_secret(self, client, remote):
        await client.post(f"{NAMESPACE_URL}/gitrepositories", json=git_repository_create_payload(
            name="private", url=remote.url,
        ))

        response = await client.get(f"{NAMESPACE_URL}/gitrepositories/private/branches")

        assert_gitops_error(response, 400, "invalid_spec")

    async def test_repository_with_secret(self, client, remote):
        await client.post(f"{NAMESPACE_URL}/secrets", json=secret_create_payload(
            name="deploy-credentials", data={"username": "bot", "password": "pw"},
            author_name="Deploy Bot", author_email="bot@example.com",
        ))
        await client.post(f"{NAMESPACE_URL}/gitrepositories", json=git_repository_create_payload(
            name="with-secret", url=remote.url, secret_name="deploy-credentials",
        ))

        response = await client.post(
            f"{NAMESPACE_URL}/gitrepositories/with-secret/branches/main/files",
            json=add_files_payload([file_payload("a.txt", b"a")], message="Add a"),
        )

        assert_status_code(response, 200)
        assert response.json()["commit"]["author"]["name"] == "Deploy Bot"

    async def test_missing_secret(self, client, remote):
        await client.post(f"{NAMESPACE_URL}/gitrepositories", json=git_repository_create_payload(
            name="dangling", url=remote.url, secret_name="nope",
        ))

        response = await client.get(f"{NAMESPACE_URL}/gitrepositories/dangling/branches")

        assert_gitops_error(response, 404, "not_found")

    async def test_secret_without_token(self, client, remote):
        await client.post(f"{NAMESPACE_URL}/secrets", json=secret_create_payload(
            name="empty", type="opaque", data={},
        ))
        await client.post(f"{NAMESPACE_URL}/gitrepositories", json=git_repository_create_payload(
            name="empty-token", url=remote.url, secret_name="empty",
        ))

        response = await client.get(f"{NAMESPACE_URL}/gitrepositories/empty-token/branches")

        assert_gitops_error(response, 400, "invalid_spec")


# -----------------------------------------------------------------------------
# Branches and Commits
# -----------------------------------------------------------------------------

class TestBranches:
    async def test_list_branches(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches")

        assert_status_code(response, 200)
        result = response.json()
        assert [b["name"] for b in result["items"]] == ["main"]
        assert result["totalItems"] == 1
        assert result["options"] == {"page": 1, "limit": 20}

    async def test_list_remote_branches(self, client, registered, remote):
        remote.create_branch("feature/x", remote.head_of("main"))

        response = await client.get(f"{REPO_URL}/branches", params={"remote": "true", "withHead": "true"})

        names = [b["name"] for b in response.json()["items"]]
        assert names[0] == "main"
        assert set(names) == {"main", "HEAD", "feature/x"}

    async def test_pagination_params(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches", params={"page": 2, "limit": 5})
        result = response.json()
        assert result["items"] == []
        assert result["totalItems"] == 1

    async def test_get_branch(self, client, registered, remote):
        response = await client.get(f"{REPO_URL}/branches/main")

        assert_status_code(response, 200)
        branch = response.json()["branch"]
        assert branch["ref"] == "refs/heads/main"
        assert branch["commit"]["hash"] == remote.head_of("main").decode()

    async def test_get_missing_branch(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches/nope")
        assert_gitops_error(response, 404, "not_found")

    async def test_checkout(self, client, registered, remote):
        remote.create_branch("release", remote.head_of("main"))

        response = await client.post(f"{REPO_URL}/branches/release/checkouts", json={"force": True})

        assert_status_code(response, 204)

    async def test_checkout_missing_branch(self, client, registered):
        response = await client.post(f"{REPO_URL}/branches/nope/checkouts")
        assert_gitops_error(response, 404, "not_found")

    async def test_pull(self, client, registered, remote):
        await client.get(f"{REPO_URL}/branches")
        sha = remote.commit("main", {"new.txt": b"new"})

        response = await client.post(f"{REPO_URL}/branches/main/pulls")
        assert_status_code(response, 204)

        commits = (await client.get(f"{REPO_URL}/branches/main/commits")).json()
        assert commits["items"][0]["commit"]["hash"] == sha.decode()


class TestCommits:
    async def test_list_commits(self, client, registered, remote):
        response = await client.get(f"{REPO_URL}/branches/main/commits")

        assert_status_code(response, 200)
        result = response.json()
        assert result["totalItems"] == 1
        commit = result["items"][0]["commit"]
        assert commit["hash"] == remote.head_of("main").decode()
        assert commit["author"]["email"] == "author@example.com"
        assert "treeHash" in commit

    async def test_list_commits_for_file(self, client, registered):
        await client.post(f"{REPO_URL}/branches/main/files",
                          json=add_files_payload([file_payload("other.txt", b"x")]))

        response = await client.get(f"{REPO_URL}/branches/main/commits", params={"file": "README.md"})

        assert response.json()["totalItems"] == 1

    async def test_get_commit(self, client, registered, remote):
        sha = remote.head_of("main").decode()

        response = await client.get(f"{REPO_URL}/commits/{sha}")

        assert_status_code(response, 200)
        assert response.json()["commit"]["message"] == "Initial commit\n"

    async def test_get_unknown_commit(self, client, registered):
        response = await client.get(f"{REPO_URL}/commits/{'0' * 40}")
        assert_gitops_error(response, 404, "not_found")


# -----------------------------------------------------------------------------
# Config
# -----------------------------------------------------------------------------

class TestConfig:
    async def test_get_config(self, client, registered, remote):
        response = await client.get(f"{REPO_URL}/configs/default")

        assert_status_code(response, 200)
        assert response.json()["config"]["remote.origin"]["url"] == remote.url

    async def test_update_config(self, client, registered):
        config = (await client.get(f"{REPO_URL}/configs/default")).json()["config"]
        config["user"] = {"name": "Config User", "email": "config@example.com"}

        response = await client.put(f"{REPO_URL}/configs/default", json={"config": config})

        assert_status_code(response, 200)
        assert response.json()["config"]["user"]["name"] == "Config User"

    async def test_update_config_requires_body(self, client, registered):
        response = await client.put(f"{REPO_URL}/configs/default", json={})
        assert_gitops_error(response, 400, "invalid_argument")


# -----------------------------------------------------------------------------
# Files
# -----------------------------------------------------------------------------

class TestReadFiles:
    async def test_list_root(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches/main/files")

        assert_status_code(response, 200)
        items = response.json()["items"]
        assert items[0]["name"] == ""
        assert items[0]["isDir"] is True
        assert {item["name"] for item in items[1:]} == {"README.md", "apps"}

    async def test_list_with_last_commit(self, client, registered, remote):
        response = await client.get(f"{REPO_URL}/branches/main/files",
                                    params={"file": "/apps/web/", "withLastCommit": "true"})

        items = response.json()["items"]
        assert items[1]["name"] == "values.yaml"
        assert items[1]["commit"]["hash"] == remote.head_of("main").decode()
        assert items[0]["commit"]["hash"] == remote.head_of("main").decode()

    async def test_list_requires_trailing_slash(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches/main/files", params={"file": "apps"})
        assert_gitops_error(response, 400, "invalid_argument")

    async def test_get_file_with_content(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches/main/files/{encode_path('README.md')}",
                                    params={"withContent": "true"})

        assert_status_code(response, 200)
        result = response.json()
        assert result["name"] == "README.md"
        assert base64.b64decode(result["data"]) == b"# deploys\n"
        assert result["size"] == len(b"# deploys\n")

    async def test_get_file_without_content(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches/main/files/{encode_path('apps/web/values.yaml')}")

        result = response.json()
        assert result["name"] == "values.yaml"
        assert result["data"] == ""

    async def test_get_file_from_commit(self, client, registered, remote):
        sha = remote.head_of("main").decode()

        response = await client.get(f"{REPO_URL}/commits/{sha}/files/{encode_path('README.md')}",
                                    params={"withContent": "true"})

        assert base64.b64decode(response.json()["data"]) == b"# deploys\n"

    async def test_download_raw_file(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches/main/rawfiles/{encode_path('apps/web/values.yaml')}")

        assert_status_code(response, 200)
        assert response.content == b"replicas: 1\n"
        assert 'filename="values.yaml"' in response.headers["content-disposition"]

    async def test_download_raw_file_from_commit(self, client, registered, remote):
        sha = remote.head_of("main").decode()

        response = await client.get(f"{REPO_URL}/commits/{sha}/rawfiles/{encode_path('README.md')}")

        assert response.content == b"# deploys\n"

    async def test_invalid_path_encoding(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches/main/files/not-base64!")
        assert_status_code(response, 400)

    async def test_missing_file(self, client, registered):
        response = await client.get(f"{REPO_URL}/branches/main/files/{encode_path('nope.txt')}")
        assert_gitops_error(response, 404, "not_found")


class TestWriteFiles:
    async def test_add_files(self, client, registered, remote):
        payload = add_files_payload([file_payload("apps/api/values.yaml", b"replicas: 2\n")], message="Add api")

        response = await client.post(f"{REPO_URL}/branches/main/files", json=payload)

        assert_status_code(response, 200)
        commit = response.json()["commit"]
        assert commit["hash"] == remote.head_of("main").decode()
        assert commit["message"].startswith("Add api\n\nSigned-off-by:")
        assert remote.read("main", "apps/api/values.yaml") == b"replicas: 2\n"

    async def test_rename_file(self, client, registered, remote):
        payload = add_files_payload([file_payload("docs/README.md", b"# deploys\n", old_name="README.md")])

        await client.post(f"{REPO_URL}/branches/main/files", json=payload)

        assert remote.read("main", "README.md") is None
        assert remote.read("main", "docs/README.md") == b"# deploys\n"

    async def test_nothing_to_commit(self, client, registered):
        payload = add_files_payload([file_payload("README.md", b"# deploys\n")])

        response = await client.post(f"{REPO_URL}/branches/main/files", json=payload)

        assert_gitops_error(response, 400, "work_tree_clean")

    async def test_invalid_base64_data(self, client, registered):
        payload = add_files_payload([{"name": "a.txt", "data": "%%%"}])
        response = await client.post(f"{REPO_URL}/branches/main/files", json=payload)
        assert_validation_error(response)

    async def test_delete_files(self, client, registered, remote):
        response = await client.delete(f"{REPO_URL}/branches/main/files",
                                       params={"file": ["README.md"], "message": "Remove readme"})

        assert_status_code(response, 200)
        assert remote.read("main", "README.md") is None

    async def test_delete_missing_file(self, client, registered):
        response = await client.delete(f"{REPO_URL}/branches/main/files",
                                       params={"file": ["nope.txt"], "message": "Remove"})
        assert_gitops_error(response, 404, "not_found")


class TestUploads:
    async def test_upload_then_add(self, client, registered, remote):
        response = await client.post(
            f"{REPO_URL}/uploads",
            files={"file0": ("chart.tgz", b"\x1f\x8b binary"), "file1": ("logo.png", b"\x89PNG")},
            data={"file0_name": "charts/chart.tgz", "file1_name": "assets/logo.png"},
        )
        assert_status_code(response, 200)
        assert response.json()["files"] == ["charts/chart.tgz", "assets/logo.png"]

        payload = add_files_payload(
            [{"name": "charts/chart.tgz"}, {"name": "assets/logo.png"}],
            message="Add uploads",
            uploaded=True,
        )
        response = await client.post(f"{REPO_URL}/branches/main/files", json=payload)

        assert_status_code(response, 200)
        assert remote.read("main", "assets/logo.png") == b"\x89PNG"

    async def test_upload_requires_files(self, client, registered):
        response = await client.post(f"{REPO_URL}/uploads", data={"file0_name": "a.txt"})
        assert_status_code(response, 400)

    async def test_upload_requires_name(self, client, registered):
        response = await client.post(f"{REPO_URL}/uploads", files={"file0": ("a.txt", b"a")})
        assert_status_code(response, 400)

    async def test_upload_size_limit(self, client, registered, settings):
        data = b"x" * (settings.file_size_limit + 1)
        response = await client.post(
            f"{REPO_URL}/uploads",
            files={"file0": ("big.bin", data)},
            data={"file0_name": "big.bin"},
        )
        assert_status_code(response, 400)

    async def test_uploaded_file_missing(self, client, registered):
        payload = add_files_payload([{"name": "never.bin"}], uploaded=True)
        response = await client.post(f"{REPO_URL}/branches/main/files", json=payload)
        assert_gitops_error(response, 404, "not_found")


class TestDeleteClone:
    async def test_delete_clone(self, client, registered, remote, settings):
        await client.get(f"{REPO_URL}/branches")
        clone_dir = get_repo_dir(settings.root_dir, "team-a", remote.url)
        assert os.path.isdir(clone_dir)

        response = await client.delete(f"{REPO_URL}/clone")

        assert_deleted_response(response)
        assert not os.path.exists(clone_dir)

    async def test_next_request_clones_again(self, client, registered):
        await client.delete(f"{REPO_URL}/clone")

        response = await client.get(f"{REPO_URL}/branches")

        assert_status_code(response, 200)
