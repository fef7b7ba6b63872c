# GitOps Repository Service Test Suite
# This package contains all tests organized by type:
# - unit/: Fast, isolated tests for individual functions/classes
# - integration/: Tests for API endpoints and component interactions
# - shared/: Git fixtures, store mocks, factories and assertions
