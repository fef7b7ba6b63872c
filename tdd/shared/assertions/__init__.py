# Custom assertion helpers

from .api import (
    assert_created_response,
    assert_deleted_response,
    assert_gitops_error,
    assert_json_contains,
    assert_json_list_length,
    assert_not_found,
    assert_status_code,
    assert_validation_error,
)
from .models import (
    assert_model_fields,
    assert_model_has_id,
    assert_model_has_timestamps,
    assert_schema_invalid,
    assert_schema_valid,
)

__all__ = [
    # API assertions
    "assert_status_code",
    "assert_json_contains",
    "assert_json_list_length",
    "assert_created_response",
    "assert_deleted_response",
    "assert_not_found",
    "assert_validation_error",
    # Git service error assertions
    "assert_gitops_error",
    # Model assertions
    "assert_model_fields",
    "assert_model_has_id",
    "assert_model_has_timestamps",
    "assert_schema_valid",
    "assert_schema_invalid",
]
