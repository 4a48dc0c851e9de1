from __future__ import annotations

import allure

from call_transcribe.metrics import PrometheusMetricsSink

pytestmark = [
    allure.epic("Monitoring"),
    allure.feature("Metrics"),
]


def test_counters_are_created_on_first_use_and_labelled() -> None:
    sink = PrometheusMetricsSink()

    sink.increment("items_processed_total", {"status": "success"})
    sink.increment("items_processed_total", {"status": "success"})
    sink.increment("items_processed_total", {"status": "failure"})
    sink.increment(
        "item_failures_total",
        {"stage": "transcribe", "code": "transcription_api_error"},
    )

    assert sink.value("items_processed_total", {"status": "success"}) == 2.0
    assert sink.value("items_processed_total", {"status": "failure"}) == 1.0
    assert (
        sink.value(
            "item_failures_total",
            {"code": "transcription_api_error", "stage": "transcribe"},
        )
        == 1.0
    )


def test_sinks_do_not_share_registries() -> None:
    first = PrometheusMetricsSink()
    second = PrometheusMetricsSink()

    first.increment("items_processed_total", {"status": "success"})

    assert second.value("items_processed_total", {"status": "success"}) == 0.0
