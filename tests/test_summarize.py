# tests/test_summarize.py
from feedpilot.summarize import summarize_pending


async def test_summarizes_and_tags_pending_articles(store, seed, gateway, fake_provider):
    feed = await seed.feed()
    a = await seed.article(feed.id, title="First", content_len=900)
    b = await seed.article(feed.id, title="Second", content_len=900)
    await seed.article(feed.id, content_len=100)  # too short for Stage 1

    out = await summarize_pending(store, gateway, min_length=500)

    assert (out.candidates, out.batches, out.summarized, out.failed, out.tagged) == (2, 1, 2, 0, 2)
    view = await store.get_article(a.id)
    assert view.article.summary == "Summary of First"
    assert view.article.summary_generated_at is not None
    assert view.tags == ["python", "asyncio"]
    assert (await store.get_article(b.id)).article.summary == "Summary of Second"
    assert len(fake_provider.called("extract_tags")) == 2


async def test_nothing_to_do(store, gateway, fake_provider):
    out = await summarize_pending(store, gateway)
    assert out.candidates == 0
    assert fake_provider.calls == []


async def test_article_read_after_selection_is_not_sent(store, seed, gateway, fake_provider, monkeypatch):
    feed = await seed.feed()
    keep = await seed.article(feed.id, content_len=900)
    gone = await seed.article(feed.id, content_len=900)

    original = store.list_unsummarized

    async def select_then_user_reads(limit, min_length):
        rows = await original(limit=limit, min_length=min_length)
        await store.mark_read(gone.id)
        return rows

    monkeypatch.setattr(store, "list_unsummarized", select_then_user_reads)

    out = await summarize_pending(store, gateway)

    assert out.stale == 1 and out.summarized == 1
    assert fake_provider.called("batch_summarize") == [[keep.id]]
    assert (await store.get_article(gone.id)).article.summary is None


async def test_missing_item_is_left_for_next_cycle(store, seed, gateway, fake_provider):
    feed = await seed.feed()
    ok = await seed.article(feed.id, content_len=900)
    missing = await seed.article(feed.id, content_len=900)
    fake_provider.missing_summaries.add(missing.id)

    out = await summarize_pending(store, gateway)

    assert out.summarized == 1 and out.failed == 1
    assert (await store.get_article(ok.id)).article.summary
    assert (await store.get_article(missing.id)).article.summary is None
    assert [a.id for a in await store.list_unsummarized(10, 500)] == [missing.id]


async def test_failed_batch_does_not_stop_the_cycle(store, seed, gateway, fake_provider):
    feed = await seed.feed()
    for _ in range(3):
        await seed.article(feed.id, content_len=600)
    fake_provider.failing_batches = 1

    # 600 + 600 > 1000, so one article per batch
    out = await summarize_pending(store, gateway, budget=1000)

    assert len(fake_provider.called("batch_summarize")) == 3
    assert out.failed == 1 and out.summarized == 2
    assert len(await store.list_unsummarized(10, 500)) == 1


async def test_tag_failure_keeps_summary(store, seed, gateway, fake_provider):
    feed = await seed.feed()
    art = await seed.article(feed.id, content_len=900)
    fake_provider.fail_tags = True

    out = await summarize_pending(store, gateway)

    assert out.summarized == 1 and out.tagged == 0
    view = await store.get_article(art.id)
    assert view.article.summary and view.tags == []


async def test_candidates_are_split_by_char_budget(store, seed, gateway, fake_provider):
    feed = await seed.feed()
    for _ in range(5):
        await seed.article(feed.id, content_len=1000)

    out = await summarize_pending(store, gateway, budget=2500)

    sizes = [len(ids) for ids in fake_provider.called("batch_summarize")]
    assert sizes == [2, 2, 1]
    assert out.batches == 3 and out.summarized == 5
