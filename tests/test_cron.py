"""Tests for the nightly rollover HTTP trigger."""

from __future__ import annotations

import json
from types import SimpleNamespace

import pytest

from slovo import bot
from slovo.config import Config
from slovo.core.rotation import RolloverReport, StepResult


class FakeScheduler:
    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.calls = 0

    async def run(self):
        self.calls += 1
        report = RolloverReport(run_date="2026-03-01", target_date="2026-03-02")
        report.steps.append(StepResult(name="publish_puzzle", ok=self.ok, detail="done"))
        return report


def _request(scheduler, headers):
    return SimpleNamespace(app={"scheduler": scheduler}, headers=headers, remote="127.0.0.1")


@pytest.mark.asyncio
async def test_rollover_requires_secret(monkeypatch) -> None:
    monkeypatch.setattr(Config, "CRON_SECRET", "s3cret")
    scheduler = FakeScheduler()

    missing = await bot.nightly_rollover(_request(scheduler, {}))
    wrong = await bot.nightly_rollover(_request(scheduler, {"X-Cron-Secret": "nope"}))

    assert missing.status == 401
    assert wrong.status == 401
    assert scheduler.calls == 0


@pytest.mark.asyncio
async def test_rollover_disabled_without_configured_secret(monkeypatch) -> None:
    monkeypatch.setattr(Config, "CRON_SECRET", None)
    scheduler = FakeScheduler()

    response = await bot.nightly_rollover(_request(scheduler, {"X-Cron-Secret": ""}))

    assert response.status == 401
    assert scheduler.calls == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("ok, status", [(True, 200), (False, 500)])
async def test_rollover_returns_report(monkeypatch, ok: bool, status: int) -> None:
    monkeypatch.setattr(Config, "CRON_SECRET", "s3cret")
    scheduler = FakeScheduler(ok=ok)

    response = await bot.nightly_rollover(_request(scheduler, {"X-Cron-Secret": "s3cret"}))

    assert response.status == status
    payload = json.loads(response.text)
    assert payload["ok"] is ok
    assert payload["target_date"] == "2026-03-02"
    assert payload["steps"][0]["name"] == "publish_puzzle"
    assert scheduler.calls == 1


def test_web_app_routes_rollover() -> None:
    app = bot.build_web_app(FakeScheduler())
    paths = {resource.canonical for resource in app.router.resources()}
    assert "/cron/nightly" in paths
