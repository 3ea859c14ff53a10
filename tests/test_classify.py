# tests/test_classify.py
from feedpilot.classify import classify_pending


async def test_classifies_summarized_articles_once(store, seed, gateway, fake_provider):
    feed = await seed.feed()
    art = await seed.article(feed.id, summary="s")
    await seed.article(feed.id)  # no summary yet

    out = await classify_pending(store, gateway)
    assert (out.candidates, out.classified, out.failed) == (1, 1, 0)
    style = await store.get_style(art.id)
    assert (style.style_type, style.tone, style.length_category) == ("news", "formal", "medium")

    again = await classify_pending(store, gateway)
    assert again.candidates == 0
    assert len(fake_provider.called("classify_style")) == 1
    assert await store.count_styles() == 1


async def test_failure_leaves_article_for_retry(store, seed, gateway, fake_provider):
    feed = await seed.feed()
    art = await seed.article(feed.id, summary="s")
    fake_provider.fail_style = True

    out = await classify_pending(store, gateway)

    assert out.failed == 1 and out.classified == 0
    assert await store.get_style(art.id) is None
    assert [a.id for a in await store.list_unclassified(10)] == [art.id]


async def test_respects_limit(store, seed, gateway):
    feed = await seed.feed()
    for _ in range(4):
        await seed.article(feed.id, summary="s")

    out = await classify_pending(store, gateway, limit=3)

    assert out.classified == 3
    assert len(await store.list_unclassified(10)) == 1
