"""Tests for leaderboard.py — row extraction and caching per (metric, window)."""

import pytest

from marketfeed.errors import FilterValidationError, UpstreamFormatDrift
from marketfeed.leaderboard import extract_rows, transform_row

from conftest import SITE

PAGE = f"{SITE}/leaderboard"
DATA = f"{SITE}/_next/data/b1/leaderboard.json"
HTML = '<script>{"buildId":"b1"}</script>'


def payload():
    def query(metric, window, rows):
        return {"queryKey": ["/leaderboard", {"orderBy": metric, "timePeriod": window}], "state": {"data": rows}}

    return {
        "pageProps": {
            "dehydratedState": {
                "queries": [
                    query("VOL", "week", [
                        {"rank": "1", "proxyWallet": "0xa", "userName": "alice", "vol": 500.0},
                        {"rank": "", "proxyWallet": "0xb", "vol": "250"},
                    ]),
                    query("PNL", "week", [
                        {"rank": "1", "proxyWallet": "0xc", "userName": "carol", "pnl": 42},
                    ]),
                    query("VOL", "month", []),
                ]
            }
        }
    }


def test_extract_rows_matches_metric_and_window():
    rows = extract_rows(payload(), "profit", "week")
    assert [r["proxyWallet"] for r in rows] == ["0xc"]


def test_extract_rows_empty_window_is_valid():
    assert extract_rows(payload(), "volume", "month") == []


def test_extract_rows_missing_query_is_drift():
    with pytest.raises(UpstreamFormatDrift):
        extract_rows(payload(), "volume", "day")


def test_transform_row_defaults():
    row = transform_row({"proxyWallet": "0xb", "vol": "250", "rank": ""}, "volume", 1)
    assert row == {
        "id": "volume-0xb",
        "rank": 2,
        "username": "Anonymous",
        "profileImage": "",
        "walletAddress": "0xb",
        "volume": 250.0,
        "change": 0,
    }


@pytest.mark.asyncio
async def test_fetch_resolves_build_id_and_caches(leaderboard, upstream, clock):
    upstream.on_text(PAGE, HTML)
    upstream.on_json(DATA, payload())

    rows = await leaderboard.fetch("volume", "week")
    again = await leaderboard.fetch("volume", "week")

    assert [r["username"] for r in rows] == ["alice", "Anonymous"]
    assert rows[0]["volume"] == 500.0
    assert again == rows
    assert len(upstream.calls_to(DATA)) == 1

    clock.advance(61)
    await leaderboard.fetch("volume", "week")
    assert len(upstream.calls_to(DATA)) == 2
    # the build id has its own, longer TTL
    assert len(upstream.calls_to(PAGE)) == 1


@pytest.mark.asyncio
async def test_metric_and_window_validated_before_network(leaderboard, upstream):
    with pytest.raises(FilterValidationError):
        await leaderboard.fetch("likes", "week")
    with pytest.raises(FilterValidationError):
        await leaderboard.fetch("volume", "year")
    assert upstream.calls == []


@pytest.mark.asyncio
async def test_metrics_share_one_payload_download(leaderboard, upstream):
    upstream.on_text(PAGE, HTML)
    upstream.on_json(DATA, payload())

    volume = await leaderboard.fetch("volume", "week")
    profit = await leaderboard.fetch("profit", "week")
    month = await leaderboard.fetch("volume", "month")

    assert volume[0]["username"] == "alice"
    assert profit[0]["profit"] == 42
    assert month == []
    assert len(upstream.calls_to(DATA)) == 1


@pytest.mark.asyncio
async def test_payload_cache_follows_build_id(leaderboard, upstream, clock):
    upstream.on_text(PAGE, HTML, '<script>{"buildId":"b2"}</script>')
    upstream.on_json(DATA, payload())
    upstream.on_json(f"{SITE}/_next/data/b2/leaderboard.json", payload())

    await leaderboard.fetch("volume", "week")
    # build id expires after 300s; the next fetch resolves a new build
    clock.advance(301)
    await leaderboard.fetch("profit", "week")

    assert len(upstream.calls_to(DATA)) == 1
    assert len(upstream.calls_to(f"{SITE}/_next/data/b2/leaderboard.json")) == 1
