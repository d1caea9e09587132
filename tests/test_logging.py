"""Tests for the structlog processors."""

import pytest
from asgi_correlation_id.context import correlation_id

from clinic_core.core.logging import _service_tagger, add_correlation_id

pytestmark = pytest.mark.unit


def test_correlation_id_added_inside_a_request():
    token = correlation_id.set("req-123")
    try:
        event = add_correlation_id(None, "info", {"event": "queue_check_in"})
    finally:
        correlation_id.reset(token)

    assert event["correlation_id"] == "req-123"


def test_no_correlation_id_outside_a_request():
    event = add_correlation_id(None, "info", {"event": "startup"})

    assert "correlation_id" not in event


def test_service_tag_does_not_override_explicit_value():
    add_service = _service_tagger("Docita Clinic Core")

    assert add_service(None, "info", {"event": "x"})["service"] == "Docita Clinic Core"
    assert add_service(None, "info", {"event": "x", "service": "worker"})["service"] == "worker"
