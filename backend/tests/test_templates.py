import json

import pytest

from parimutuel.services.templates import (
    default_templates,
    is_asset_supported,
    load_templates,
    parse_templates,
    supported_assets,
)


def test_defaults_cover_every_asset_and_cadence() -> None:
    templates = default_templates()

    assert len(templates) == 12
    assert supported_assets(templates) == ["BTC", "ETH", "SOL"]
    one_minute = next(t for t in templates if t.asset == "BTC" and t.interval_key == "1m")
    assert (one_minute.duration_seconds, one_minute.join_window_seconds, one_minute.lock_buffer_seconds) == (60, 50, 10)
    assert one_minute.period_seconds == 60


def test_empty_setting_falls_back_to_defaults() -> None:
    assert parse_templates("") == default_templates()
    assert parse_templates("   ") == default_templates()


def test_camel_case_templates_are_accepted() -> None:
    raw = json.dumps(
        [
            {
                "asset": "sol",
                "intervalKey": "15m",
                "interval": 900,
                "joinWindowSeconds": 840,
                "creationPeriodSeconds": 1800,
            }
        ]
    )

    (template,) = parse_templates(raw)

    assert template.asset == "SOL"
    assert template.duration_seconds == 900
    assert template.lock_buffer_seconds == 60
    assert template.period_seconds == 1800


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        json.dumps([{"asset": "BTC", "interval_key": "5m", "duration_seconds": 30, "join_window_seconds": 20}]),
        json.dumps({"asset": "BTC"}),
    ],
)
def test_invalid_templates_are_rejected(raw: str) -> None:
    with pytest.raises(ValueError):
        parse_templates(raw)


def test_load_templates_reads_settings(settings) -> None:
    configured = settings.model_copy(
        update={
            "pool_templates": json.dumps(
                [{"asset": "ETH", "interval_key": "5m", "duration_seconds": 300, "join_window_seconds": 240}]
            )
        }
    )

    templates = load_templates(configured)

    assert [(t.asset, t.interval_key) for t in templates] == [("ETH", "5m")]
    assert is_asset_supported(" eth ", templates)
    assert not is_asset_supported("BTC", templates)
