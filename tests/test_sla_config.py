import pytest

from idesk.core.exceptions import ConfigurationException
from idesk.sla.domain import BreachThresholds
from idesk.sla.domain.value_objects import format_minutes
from idesk.sla.infrastructure.external import SlaConfigManager


def write(path, text):
    path.write_text(text)
    return path


def test_missing_file_falls_back_to_defaults(tmp_path):
    manager = SlaConfigManager()

    thresholds = manager.load(tmp_path / "absent.yaml")

    assert thresholds == BreachThresholds()
    assert manager.get_thresholds().response_at_risk_percent == 20


def test_load_reads_breach_thresholds(tmp_path):
    path = write(tmp_path / "sla_config.yaml", (
        "breach_thresholds:\n"
        "  response_at_risk_percent: 25\n"
        "  resolution_at_risk_percent: 10\n"
    ))
    manager = SlaConfigManager()

    manager.load(path)

    assert manager.get_thresholds().response_at_risk_percent == 25
    assert manager.get_thresholds().resolution_lead_seconds(600) == pytest.approx(3600)


def test_invalid_file_fails_initial_load(tmp_path):
    path = write(tmp_path / "sla_config.yaml", "breach_thresholds:\n  response_at_risk_percent: 150\n")

    with pytest.raises(ConfigurationException):
        SlaConfigManager().load(path)


def test_reload_keeps_previous_thresholds_on_bad_file(tmp_path):
    path = write(tmp_path / "sla_config.yaml", "breach_thresholds:\n  response_at_risk_percent: 30\n")
    manager = SlaConfigManager()
    manager.load(path)

    write(path, "breach_thresholds: [not, a, mapping\n")

    assert manager.reload() is False
    assert manager.get_thresholds().response_at_risk_percent == 30


def test_reload_picks_up_new_values(tmp_path):
    path = write(tmp_path / "sla_config.yaml", "breach_thresholds:\n  response_at_risk_percent: 30\n")
    manager = SlaConfigManager()
    manager.load(path)

    write(path, "breach_thresholds:\n  response_at_risk_percent: 5\n")

    assert manager.reload() is True
    assert manager.get_thresholds().response_at_risk_percent == 5


def test_reload_before_load_does_nothing():
    assert SlaConfigManager().reload() is False


@pytest.mark.parametrize("value, expected", [
    (0, "0m"),
    (-3, "0m"),
    (45, "45m"),
    (120, "2h"),
    (1505, "1d 1h 5m"),
])
def test_format_minutes(value, expected):
    assert format_minutes(value) == expected
