"""
Project-wide pytest configuration.

Auto-marks tests unit/integration/e2e by filename. App-specific fixtures
are defined in each app's tests/conftest.py.
"""

import pytest


def pytest_collection_modifyitems(items):
    """
    Auto-mark tests based on filename patterns.

    Mapping:
    - test_integration.py, test_concurrency.py → e2e (full pipeline runs)
    - test_services.py, test_tasks.py, test_handlers.py, etc. → integration
    - test_models.py, test_calculator.py, test_locks.py, etc. → unit
    - Unmatched files → integration (safe default for Django)

    Explicit markers on test functions/classes take precedence.
    """
    e2e_patterns = ["test_integration.py", "test_concurrency.py"]

    integration_patterns = [
        "test_services.py",
        "test_ledger_services.py",
        "test_tasks.py",
        "test_handlers.py",
        "test_pipeline.py",
        "test_side_effects.py",
        "test_idempotency.py",
        "test_reconciliation_service.py",
    ]

    unit_patterns = [
        "test_models.py",
        "test_metadata.py",
        "test_calculator.py",
        "test_audit.py",
        "test_exceptions.py",
        "test_service_result.py",
        "test_state_transitions.py",
        "test_locks.py",
    ]

    for item in items:
        # Skip if test already has unit/integration/e2e marker
        existing_markers = {m.name for m in item.iter_markers()}
        if existing_markers & {"unit", "integration", "e2e"}:
            continue

        filename = str(item.fspath).split("/")[-1]

        if any(pattern in filename for pattern in e2e_patterns):
            item.add_marker(pytest.mark.e2e)
        elif any(pattern in filename for pattern in integration_patterns):
            item.add_marker(pytest.mark.integration)
        elif any(pattern in filename for pattern in unit_patterns):
            item.add_marker(pytest.mark.unit)
        else:
            item.add_marker(pytest.mark.integration)
