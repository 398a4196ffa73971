"""Tests for log redaction."""

import logging

from storefront.security.logging_filters import SensitiveFilter, redact


def test_redact_masks_contact_details_and_codes() -> None:
    text = redact("guest jane.doe@example.com +1 (555) 123-4567 check_in_code=12345678")
    assert "jane.doe@example.com" not in text
    assert "123-4567" not in text
    assert "12345678" not in text
    assert text.count("**REDACTED**") == 3


def test_filter_scrubs_args() -> None:
    record = logging.LogRecord(
        "storefront", logging.INFO, __file__, 1, "Booking for %s", ("sam@example.com",), None
    )
    assert SensitiveFilter().filter(record) is True
    assert record.getMessage() == "Booking for **REDACTED**"


def test_uuids_are_left_alone() -> None:
    value = "Reservation 0f8fad5b-d9cb-469f-a165-70867728950e created"
    assert redact(value) == value
