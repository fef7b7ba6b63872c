"""
Custom assertion helpers for API testing.

These helpers provide cleaner, more expressive assertions for common
patterns in API tests.
"""
from typing import Any

from httpx import Response


def assert_status_code(response: Response, expected: int) -> None:
    """Assert response has expected status code with helpful error message."""
    assert response.status_code == expected, (
        f"Expected status {expected}, got {response.status_code}. "
        f"Response body: {response.text}"
    )


def assert_json_contains(response: Response, expected: dict[str, Any] = None, **kwargs) -> None:
    """Assert response JSON contains all expected key-value pairs.

    This allows for partial matching - the response can contain additional
    fields not specified in expected.

    Can be called as:
        assert_json_contains(response, {"name": "value"})
        assert_json_contains(response, name="value")
    """
    if expected is None:
        expected = kwargs
    else:
        expected = {**expected, **kwargs}

    actual = response.json()
    for key, value in expected.items():
        assert key in actual, f"Expected key '{key}' not found in response: {actual}"
        assert actual[key] == value, (
            f"Expected {key}={value!r}, got {key}={actual[key]!r}"
        )


def assert_json_list_length(response: Response, expected_length: int) -> None:
    """Assert response JSON is a list of expected length."""
    actual = response.json()
    assert isinstance(actual, list), f"Expected list, got {type(actual)}"
    assert len(actual) == expected_length, (
        f"Expected {expected_length} items, got {len(actual)}"
    )


def assert_created_response(response: Response, expected: dict[str, Any] = None, **kwargs) -> dict[str, Any]:
    """Assert response is a successful creation (201) with expected fields.

    Returns the full response JSON for further assertions.
    """
    assert_status_code(response, 201)
    if expected is not None or kwargs:
        assert_json_contains(response, expected, **kwargs)
    actual = response.json()
    assert "id" in actual, "Created response should include 'id'"
    return actual


def assert_deleted_response(response: Response) -> None:
    """Assert response is a successful deletion (204)."""
    assert_status_code(response, 204)


def assert_not_found(response: Response, resource_type: str = None) -> None:
    """Assert response is a 404 Not Found error.

    If resource_type is provided, checks that the detail mentions it.
    """
    assert_status_code(response, 404)
    actual = response.json()
    assert "detail" in actual, f"Expected 'detail' in error response: {actual}"
    assert "not found" in actual["detail"].lower(), (
        f"Expected 'not found' in detail, got '{actual['detail']}'"
    )
    if resource_type:
        assert resource_type in actual["detail"], (
            f"Expected '{resource_type}' in detail, got '{actual['detail']}'"
        )


def assert_validation_error(response: Response) -> dict[str, Any]:
    """Assert response is a validation error (422).

    Returns the error detail for further inspection.
    """
    assert_status_code(response, 422)
    return response.json()


# -----------------------------------------------------------------------------
# Git Service Error Assertions
# -----------------------------------------------------------------------------

def assert_gitops_error(response: Response, status_code: int, kind: str) -> str:
    """Assert response is a service error of the given kind.

    Returns:
        The error detail message
    """
    assert_status_code(response, status_code)
    actual = response.json()
    assert actual.get("kind") == kind, (
        f"Expected error kind '{kind}', got '{actual.get('kind')}': {actual}"
    )
    assert actual.get("detail"), f"Error response should carry a detail: {actual}"
    return actual["detail"]
