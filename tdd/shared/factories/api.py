"""
API request/response factories.

These factories create dictionaries suitable for API request payloads
and expected response structures. They help keep tests DRY and maintainable.
"""
import base64
from typing import Any

from faker import Faker

fake = Faker()


# -----------------------------------------------------------------------------
# Git Repository API Factories
# -----------------------------------------------------------------------------

def git_repository_create_payload(
    name: str | None = None,
    url: str | None = None,
    secret_name: str | None = None,
    public: bool = False,
    **kwargs,
) -> dict[str, Any]:
    """Create a payload for POST /api/v1alpha3/namespaces/{namespace}/gitrepositories."""
    payload = {
        "name": name or fake.slug(),
        "url": url or f"https://{fake.domain_name()}/{fake.user_name()}/{fake.slug()}.git",
        "secret_name": secret_name,
        "public": public,
    }
    payload.update(kwargs)
    return payload


def secret_create_payload(
    name: str | None = None,
    type: str = "basic-auth",
    data: dict[str, str] | None = None,
    author_name: str | None = None,
    author_email: str | None = None,
) -> dict[str, Any]:
    """Create a payload for POST /api/v1alpha3/namespaces/{namespace}/secrets."""
    return {
        "name": name or f"{fake.word()}-credentials",
        "type": type,
        "data": data if data is not None else {"username": fake.user_name(), "password": fake.password()},
        "author_name": author_name,
        "author_email": author_email,
    }


# -----------------------------------------------------------------------------
# Git Operation Payloads
# -----------------------------------------------------------------------------

def file_payload(name: str, data: bytes, old_name: str = "") -> dict[str, Any]:
    """One entry of the ``files`` list in an add-files request."""
    payload = {"name": name, "data": base64.b64encode(data).decode("ascii")}
    if old_name:
        payload["oldName"] = old_name
    return payload


def add_files_payload(
    files: list[dict[str, Any]],
    message: str | None = None,
    overwrite: bool = True,
    **kwargs,
) -> dict[str, Any]:
    """Create a payload for POST .../branches/{branch}/files."""
    payload = {
        "files": files,
        "message": message or fake.sentence(nb_words=4).rstrip("."),
        "overwrite": overwrite,
    }
    payload.update(kwargs)
    return payload


def encode_path(path: str) -> str:
    """Encode a repository path for use as a URL path segment."""
    return base64.b64encode(path.encode("utf-8")).decode("ascii")
