import asyncio
import functools
from dataclasses import replace
from datetime import timedelta
from email.utils import format_datetime

from conftest import NOW, FeedSource, RecordingPush, feed_document, feed_item
from health.health import get_feed_state
from ingest.errors import FetchError
from normalize.models import ONGOING, PAST, REAL_TIME
from normalize.normalize import normalize_feed
from notify.dispatcher import NotificationDispatcher
from reconcile.reconciler import Reconciler, classify_status
from store.db import PersistenceError


def _reconciler(repo, geo, types, source, push=None, *, delay_seconds=0.0):
    dispatcher = NotificationDispatcher(
        push=push or RecordingPush(), threshold=5, delay_seconds=delay_seconds
    )
    reconciler = Reconciler(
        fetch=source,
        normalize=functools.partial(normalize_feed, geo=geo, types=types),
        repo=repo,
        dispatcher=dispatcher,
    )
    return reconciler, dispatcher


def test_classify_status_boundary() -> None:
    assert classify_status(NOW - timedelta(hours=24), NOW) == REAL_TIME
    assert classify_status(NOW - timedelta(hours=24.01), NOW) == ONGOING
    assert classify_status(NOW - timedelta(days=6), NOW) == ONGOING


def test_end_to_end_jitter_and_new_item(repo, geo, types) -> None:
    old = NOW - timedelta(days=3)
    fresh = NOW - timedelta(hours=2)
    source = FeedSource(
        feed_document(
            feed_item("X", from_date=old, lat="10.9", long="20.3", iso3="TCD"),
            feed_item("Y", from_date=fresh),
        )
    )
    seeded = normalize_feed(
        feed_document(feed_item("X", from_date=old, lat="10.7", long="20.1", iso3="TCD")),
        geo=geo,
        types=types,
    )[0]
    repo.save(seeded)
    push = RecordingPush()
    reconciler, dispatcher = _reconciler(repo, geo, types, source, push)

    async def scenario():
        result = await reconciler.reconcile(NOW)
        await dispatcher.drain()
        return result

    result = asyncio.run(scenario())

    assert (result.new_count, result.updated_count, result.past_count) == (1, 0, 0)
    assert repo.find_one("X").latitude == "10.7"
    y = repo.find_one("Y")
    assert y is not None and y.status == REAL_TIME
    assert [r.id for r in result.notified] == ["Y"]
    assert [r.id for r in push.sent] == ["Y"]


def test_second_pass_with_unchanged_feed_is_idempotent(repo, geo, types) -> None:
    source = FeedSource(
        feed_document(
            feed_item("A", from_date=NOW - timedelta(hours=1)),
            feed_item("B", from_date=NOW - timedelta(days=2), event_type="FL", iso3="KEN"),
        )
    )
    reconciler, _ = _reconciler(repo, geo, types, source)

    async def two_passes():
        first = await reconciler.reconcile(NOW)
        second = await reconciler.reconcile(NOW + timedelta(seconds=30))
        return first, second

    first, second = asyncio.run(two_passes())
    assert (first.new_count, first.updated_count) == (2, 0)
    assert (second.new_count, second.updated_count, second.past_count) == (0, 0, 0)
    assert second.notified == []


def test_disappeared_records_become_past(repo, geo, types) -> None:
    source = FeedSource(
        feed_document(
            feed_item("A", from_date=NOW - timedelta(days=1, hours=1)),
            feed_item("Z", from_date=NOW - timedelta(days=5)),
        )
    )
    reconciler, _ = _reconciler(repo, geo, types, source)

    async def passes():
        await reconciler.reconcile(NOW)
        source.data = feed_document(feed_item("A", from_date=NOW - timedelta(days=1, hours=1)))
        dropped = await reconciler.reconcile(NOW)
        again = await reconciler.reconcile(NOW)
        return dropped, again

    dropped, again = asyncio.run(passes())
    assert dropped.past_count == 1
    assert repo.find_one("Z").status == PAST
    assert again.past_count == 0
    assert {r.id for r in repo.find_by_status([REAL_TIME, ONGOING])} == {"A"}


def test_whole_degree_move_updates_record(repo, geo, types) -> None:
    when = NOW - timedelta(days=2)
    source = FeedSource(feed_document(feed_item("A", from_date=when, lat="12.934")))
    reconciler, _ = _reconciler(repo, geo, types, source)

    async def passes():
        await reconciler.reconcile(NOW)
        source.data = feed_document(feed_item("A", from_date=when, lat="12.187"))
        jitter = await reconciler.reconcile(NOW)
        source.data = feed_document(feed_item("A", from_date=when, lat="13.02"))
        moved = await reconciler.reconcile(NOW)
        return jitter, moved

    jitter, moved = asyncio.run(passes())
    assert jitter.updated_count == 0
    assert moved.updated_count == 1
    assert repo.find_one("A").latitude == "13.02"


def test_ageing_past_the_window_is_persisted(repo, geo, types) -> None:
    source = FeedSource(feed_document(feed_item("A", from_date=NOW - timedelta(hours=23))))
    reconciler, _ = _reconciler(repo, geo, types, source)

    async def passes():
        await reconciler.reconcile(NOW)
        return await reconciler.reconcile(NOW + timedelta(hours=2))

    assert repo.find_one("A") is None
    later = asyncio.run(passes())
    assert later.updated_count == 1
    assert repo.find_one("A").status == ONGOING


def test_past_record_reappearing_is_inserted_as_new(repo, geo, types) -> None:
    source = FeedSource(feed_document(feed_item("A", from_date=NOW - timedelta(days=2))))
    reconciler, _ = _reconciler(repo, geo, types, source)
    seeded = normalize_feed(source.data, geo=geo, types=types)[0]
    repo.save(replace(seeded, status=PAST))

    result = asyncio.run(reconciler.reconcile(NOW))

    assert result.new_count == 1
    assert [r.id for r in result.created] == ["A"]
    assert repo.find_one("A").status == ONGOING
    assert len(repo.find_all()) == 1


def test_duplicate_ids_in_one_batch_insert_once(repo, geo, types) -> None:
    item = feed_item("A", from_date=NOW - timedelta(hours=3))
    source = FeedSource(feed_document(item, item))
    reconciler, _ = _reconciler(repo, geo, types, source)

    result = asyncio.run(reconciler.reconcile(NOW))
    assert (result.new_count, result.updated_count) == (1, 0)


def test_persistence_failure_skips_only_that_record(repo, geo, types, monkeypatch) -> None:
    source = FeedSource(
        feed_document(
            feed_item("A", from_date=NOW - timedelta(hours=1)),
            feed_item("B", from_date=NOW - timedelta(hours=1)),
        )
    )
    reconciler, _ = _reconciler(repo, geo, types, source)
    real_save = repo.save

    def flaky_save(record):
        if record.id == "A":
            raise PersistenceError("disk I/O error")
        real_save(record)

    monkeypatch.setattr(repo, "save", flaky_save)
    result = asyncio.run(reconciler.reconcile(NOW))

    assert result.new_count == 1
    assert [r.id for r in result.created] == ["B"]
    assert repo.find_one("A") is None


def test_undated_item_does_not_abort_pass(repo, geo, types) -> None:
    from_date = NOW - timedelta(hours=1)
    undated = feed_item("B", from_date=from_date).replace(
        format_datetime(from_date, usegmt=True), "not a date"
    )
    source = FeedSource(feed_document(feed_item("A", from_date=from_date), undated))
    reconciler, dispatcher = _reconciler(repo, geo, types, source)

    async def scenario():
        outcome = await reconciler.run_pass(NOW)
        await dispatcher.drain()
        return outcome

    outcome = asyncio.run(scenario())
    assert outcome["success"] is True
    assert repo.find_one("A").status == REAL_TIME
    assert repo.find_one("B") is None


def test_fetch_failure_leaves_store_untouched(repo, geo, types) -> None:
    repo.save(
        normalize_feed(
            feed_document(feed_item("A", from_date=NOW - timedelta(days=2))),
            geo=geo,
            types=types,
        )[0]
    )
    source = FeedSource()
    source.error = FetchError("http_503")
    reconciler, _ = _reconciler(repo, geo, types, source)

    outcome = asyncio.run(reconciler.run_pass(NOW))

    assert outcome == {"success": False, "message": "Update Failed."}
    assert repo.find_one("A").status == ONGOING
    state = get_feed_state(repo.db, reconciler.feed_id)
    assert state["consecutive_failures"] == 1
    assert state["last_error"].startswith("fetch_error:")


def test_unknown_type_code_aborts_pass(repo, geo, types) -> None:
    source = FeedSource(
        feed_document(
            feed_item("A", from_date=NOW),
            feed_item("B", from_date=NOW, event_type="ZZ"),
        )
    )
    reconciler, _ = _reconciler(repo, geo, types, source)

    outcome = asyncio.run(reconciler.run_pass(NOW))

    assert outcome["success"] is False
    assert repo.find_all() == []


def test_run_pass_reports_counts(repo, geo, types) -> None:
    source = FeedSource(feed_document(feed_item("A", from_date=NOW)))
    reconciler, dispatcher = _reconciler(repo, geo, types, source)

    async def scenario():
        outcome = await reconciler.run_pass(NOW)
        await dispatcher.drain()
        return outcome

    outcome = asyncio.run(scenario())
    assert outcome["success"] is True
    assert "1 new" in outcome["message"]
    assert get_feed_state(repo.db, reconciler.feed_id)["last_new_count"] == 1


def test_overlapping_pass_is_skipped(repo, geo, types) -> None:
    data = feed_document(feed_item("A", from_date=NOW))
    release = None
    calls = 0

    async def slow_fetch() -> bytes:
        nonlocal calls
        calls += 1
        await release.wait()
        return data

    reconciler, dispatcher = _reconciler(repo, geo, types, slow_fetch)

    async def scenario():
        nonlocal release
        release = asyncio.Event()
        first = asyncio.create_task(reconciler.run_pass(NOW))
        await asyncio.sleep(0)
        assert reconciler.running
        skipped = await reconciler.run_pass(NOW)
        release.set()
        completed = await first
        await dispatcher.drain()
        return skipped, completed

    skipped, completed = asyncio.run(scenario())
    assert skipped == {"success": False, "message": "Update already in progress."}
    assert completed["success"] is True
    assert calls == 1


def test_six_new_records_send_no_notifications(repo, geo, types) -> None:
    source = FeedSource(
        feed_document(*(feed_item(f"EQ{i}", from_date=NOW) for i in range(6)))
    )
    push = RecordingPush()
    reconciler, dispatcher = _reconciler(repo, geo, types, source, push)

    async def scenario():
        result = await reconciler.reconcile(NOW)
        await dispatcher.drain()
        return result

    result = asyncio.run(scenario())
    assert result.new_count == 6
    assert result.notified == []
    assert push.sent == []
