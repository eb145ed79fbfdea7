"""Visibility-filtered reads: feed, author pages, search, suggestions, moderation."""
import pytest

from microbio_blog.core.errors import AuthorizationError, NotFoundError, ValidationError
from microbio_blog.models.post import PostStatus, SearchType, SuggestionType


@pytest.fixture()
async def library(manager, make_post, users):
    """One post in each visibility state, all by the same author."""
    posts = {
        "public": await make_post(title="Phage therapy against resistant bacteria", tags=["phage", "amr"]),
        "draft": await make_post(title="Unfinished notes on phages", status=PostStatus.DRAFT),
        "archived": await make_post(title="Old culture methods"),
        "flagged": await make_post(title="Questionable phage claims"),
        "virology": await make_post(
            title="Influenza drift explained", owner="other", category="virology", tags=["influenza"],
        ),
    }
    await manager.archive_post(users["author"], posts["archived"].id, "Superseded")
    await manager.mark_offensive(users["admin"], posts["flagged"].id, "Misinformation")
    return posts


def ids(items):
    return {post.id for post in items}


async def test_get_post_by_slug(manager, library):
    post = await manager.get_post(None, library["public"].slug)
    assert post.id == library["public"].id


async def test_get_post_visibility(manager, library, users):
    for key in ("draft", "archived", "flagged"):
        with pytest.raises(NotFoundError):
            await manager.get_post(None, library[key].id)
        with pytest.raises(NotFoundError):
            await manager.get_post(users["other"], library[key].id)
        assert (await manager.get_post(users["author"], library[key].id)).id == library[key].id
        assert (await manager.get_post(users["admin"], library[key].id)).id == library[key].id


async def test_feed_is_public_for_non_admins(manager, library, users):
    expected = {library["public"].id, library["virology"].id}
    for caller in (None, users["reader"], users["other"]):
        feed = await manager.list_posts(caller)
        assert ids(feed.items) == expected
        assert feed.total == 2


async def test_admin_feed_includes_flagged_published_posts(manager, library, users):
    feed = await manager.list_posts(users["admin"])

    assert ids(feed.items) == {library[k].id for k in ("public", "flagged", "virology")}
    assert library["draft"].id not in ids(feed.items)
    assert library["archived"].id not in ids(feed.items)


async def test_author_sees_own_posts_in_feed(manager, library, users):
    mine = await manager.list_posts(users["author"], author=users["author"].id)
    assert ids(mine.items) == {library[k].id for k in ("public", "draft", "archived", "flagged")}

    drafts = await manager.list_posts(users["author"], author=users["author"].id, status="draft")
    assert ids(drafts.items) == {library["draft"].id}


async def test_feed_author_filter_for_others_is_public(manager, library, users):
    result = await manager.list_posts(users["other"], author=users["author"].id, status="draft")
    assert ids(result.items) == {library["public"].id}


async def test_feed_category_and_search_filters(manager, library):
    virology = await manager.list_posts(None, category="virology")
    assert ids(virology.items) == {library["virology"].id}

    unknown = await manager.list_posts(None, category="mycology")
    assert unknown.total == 0

    searched = await manager.list_posts(None, search="PHAGE")
    assert ids(searched.items) == {library["public"].id}


async def test_feed_pagination(manager, make_post):
    for n in range(5):
        await make_post(title=f"Spore survival study {n}")

    page = await manager.list_posts(None, page=2, limit=2)
    assert page.total == 5
    assert page.total_pages == 3
    assert len(page.items) == 2

    with pytest.raises(ValidationError):
        await manager.list_posts(None, page=0)
    with pytest.raises(ValidationError):
        await manager.list_posts(None, limit=500)
    with pytest.raises(ValidationError):
        await manager.list_posts(None, sort="-password")


async def test_posts_by_author_status_filter(manager, library, users):
    author_id = users["author"].id

    public_view = await manager.get_posts_by_author(None, author_id, status="draft")
    assert ids(public_view.items) == {library["public"].id}

    own_drafts = await manager.get_posts_by_author(users["author"], author_id, status="draft")
    assert ids(own_drafts.items) == {library["draft"].id}

    admin_all = await manager.get_posts_by_author(users["admin"], author_id)
    # Flagged posts stay out of author pages
    assert ids(admin_all.items) == {library[k].id for k in ("public", "draft", "archived")}


async def test_featured_and_popular(manager, library, users):
    await manager.set_featured(users["admin"], library["public"].id, True)
    await manager.set_featured(users["admin"], library["draft"].id, True)
    featured = await manager.get_featured_posts()
    assert ids(featured) == {library["public"].id}

    for _ in range(3):
        await manager.increment_view(library["virology"].id)
    popular = await manager.get_popular_posts()
    assert [p.id for p in popular] == [library["virology"].id, library["public"].id]


async def test_related_posts(manager, library, make_post):
    sibling = await make_post(title="Phage cocktails", tags=["phage"], owner="other", category="virology")
    related = await manager.get_related_posts(None, library["public"].id)

    assert sibling.id in ids(related)
    assert library["public"].id not in ids(related)
    assert library["flagged"].id not in ids(related)

    with pytest.raises(NotFoundError):
        await manager.get_related_posts(None, library["draft"].id)


async def test_search_by_type(manager, library):
    by_title = await manager.search_posts(None, "influenza", SearchType.TITLE)
    assert ids(by_title.items) == {library["virology"].id}
    assert by_title.search_info.results_count == 1

    by_tag = await manager.search_posts(None, "amr", SearchType.TAGS)
    assert ids(by_tag.items) == {library["public"].id}

    by_author = await manager.search_posts(None, "pasteur", SearchType.AUTHOR)
    assert ids(by_author.items) == {library["virology"].id}
    assert by_author.search_info.matched_authors == 1

    nobody = await manager.search_posts(None, "koch", SearchType.AUTHOR)
    assert nobody.total == 0


async def test_search_escapes_regex_and_requires_query(manager, library):
    result = await manager.search_posts(None, "phage.*(")
    assert result.total == 0

    with pytest.raises(ValidationError):
        await manager.search_posts(None, "   ")


async def test_search_never_returns_hidden_posts(manager, library, users):
    result = await manager.search_posts(users["admin"], "phage")
    assert ids(result.items) == {library["public"].id}


async def test_search_suggestions(manager, library):
    assert (await manager.get_search_suggestions("p")).suggestions == []

    everything = await manager.get_search_suggestions("pha")
    kinds = {s.type for s in everything.suggestions}
    assert kinds == {"title", "tag"}
    assert everything.counts["titles"] == 1
    assert any(s.value == "phage" for s in everything.suggestions)

    authors = await manager.get_search_suggestions("franklin", SuggestionType.AUTHORS)
    assert [s.display for s in authors.suggestions] == ["Rosalind Franklin"]


async def test_moderation_queue(manager, library, users):
    with pytest.raises(AuthorizationError):
        await manager.get_moderation_queue(users["author"])

    everything = await manager.get_moderation_queue(users["admin"])
    assert everything.total == 5

    flagged = await manager.get_moderation_queue(users["admin"], offensive=True)
    assert ids(flagged.items) == {library["flagged"].id}

    archived = await manager.get_moderation_queue(users["admin"], status="archived")
    assert ids(archived.items) == {library["archived"].id}
