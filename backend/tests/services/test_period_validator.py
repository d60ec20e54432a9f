import pytest
from datetime import date

from seller_analytics.exceptions import PeriodValidationError
from seller_analytics.models.analytics import Period
from seller_analytics.services.analytics.period_validator import validate_period, validate_periods

TODAY = date(2025, 3, 15)


def _rule(date_from, date_to):
    with pytest.raises(PeriodValidationError) as exc_info:
        validate_period(date_from, date_to, today=TODAY)
    return exc_info.value.rule


def test_valid_period_passes():
    validate_period(date(2025, 3, 8), date(2025, 3, 15), today=TODAY)
    validate_period(TODAY, TODAY, today=TODAY)
    validate_period(date(2025, 3, 8), date(2025, 3, 8), today=TODAY)


def test_date_to_in_future_rejected():
    assert _rule(date(2025, 3, 14), date(2025, 3, 16)) == "date_to_in_future"


def test_period_longer_than_seven_days_rejected():
    with pytest.raises(PeriodValidationError) as exc_info:
        validate_period(date(2025, 3, 8), date(2025, 3, 16), today=date(2025, 3, 16))
    assert exc_info.value.rule == "period_too_long"
    assert exc_info.value.params["requested_days"] == 8


def test_date_from_too_old_rejected():
    assert _rule(date(2025, 3, 7), date(2025, 3, 10)) == "date_from_too_old"


def test_date_from_after_date_to_rejected():
    assert _rule(date(2025, 3, 12), date(2025, 3, 10)) == "date_from_after_date_to"


def test_error_payload_carries_rule_and_params():
    with pytest.raises(PeriodValidationError) as exc_info:
        validate_period(date(2025, 3, 7), date(2025, 3, 10), today=TODAY)
    payload = exc_info.value.to_dict()
    assert payload["error"] == "validation_error"
    assert payload["rule"] == "date_from_too_old"
    assert payload["params"]["min_date"] == "2025-03-08"


def test_validate_periods_count_bounds():
    with pytest.raises(PeriodValidationError) as exc_info:
        validate_periods([], today=TODAY)
    assert exc_info.value.rule == "period_count"

    periods = [
        Period(id=i, label=f"p{i}", date_from=date(2025, 3, 10), date_to=date(2025, 3, 11))
        for i in range(11)
    ]
    with pytest.raises(PeriodValidationError) as exc_info:
        validate_periods(periods, today=TODAY)
    assert exc_info.value.rule == "period_count"

    validate_periods(periods[:10], today=TODAY)


def test_validate_periods_checks_each_period():
    periods = [
        Period(id=1, label="ok", date_from=date(2025, 3, 10), date_to=date(2025, 3, 11)),
        Period(id=2, label="future", date_from=date(2025, 3, 14), date_to=date(2025, 3, 20)),
    ]
    with pytest.raises(PeriodValidationError) as exc_info:
        validate_periods(periods, today=TODAY)
    assert exc_info.value.rule == "date_to_in_future"


def test_validate_periods_rejects_duplicate_ids():
    periods = [
        Period(id=1, label="a", date_from=date(2025, 3, 10), date_to=date(2025, 3, 11)),
        Period(id=2, label="b", date_from=date(2025, 3, 12), date_to=date(2025, 3, 13)),
        Period(id=1, label="c", date_from=date(2025, 3, 14), date_to=date(2025, 3, 15)),
    ]
    with pytest.raises(PeriodValidationError) as exc_info:
        validate_periods(periods, today=TODAY)
    assert exc_info.value.rule == "duplicate_period_id"
    assert exc_info.value.params == {"period_id": 1}
