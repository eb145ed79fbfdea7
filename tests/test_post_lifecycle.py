"""Post lifecycle: create, update, archive, offense overlay, likes and views."""
import pytest
from pydantic import ValidationError as SchemaValidationError

from microbio_blog.core.errors import AuthorizationError, NotFoundError, ValidationError
from microbio_blog.core.utils import utcnow
from microbio_blog.models.events import DomainEvent, PostCreated, PostLiked, PostPublished
from microbio_blog.models.post import PostCreate, PostPatch, PostStatus

from conftest import PNG_DATA_URI

MISSING_ID = "64b7f0c2a1b2c3d4e5f60718"


@pytest.fixture()
def recorded(events):
    seen = []

    async def record(event):
        seen.append(event)

    events.subscribe(DomainEvent, record)
    return seen


# -- create ----------------------------------------------------------------

async def test_create_draft_sets_defaults_and_derived_fields(make_post):
    post = await make_post(
        status=PostStatus.DRAFT,
        content=" ".join(["microbe"] * 250),
        tags="Biofilm, AMR, biofilm",
    )

    assert post.status == PostStatus.DRAFT
    assert post.published_at is None
    assert post.slug == "biofilm-formation-on-catheters"
    assert post.word_count == 250
    assert post.read_time == 2
    assert post.tags == ["biofilm", "amr"]
    assert post.excerpt == ""
    assert (post.views, post.likes, post.comments) == (0, 0, 0)
    assert post.is_offensive is False
    assert post.featured is False
    assert post.author.first_name == "Rosalind"
    assert post.category.slug == "bacteriology"


async def test_create_published_sets_published_at(make_post):
    post = await make_post()

    assert post.status == PostStatus.PUBLISHED
    assert post.published_at is not None
    assert post.published_at <= utcnow()


async def test_create_resolves_category_by_id(make_post, categories):
    post = await make_post(category=categories["virology"])
    assert post.category.slug == "virology"


async def test_create_requires_existing_category(make_post):
    with pytest.raises(ValidationError):
        await make_post(category="mycology")


async def test_create_rejects_blank_title(make_post):
    with pytest.raises(ValidationError):
        await make_post(title="   ")


async def test_create_rejects_archived_status(make_post):
    with pytest.raises(ValidationError):
        await make_post(status=PostStatus.ARCHIVED)


async def test_reader_cannot_create(make_post):
    with pytest.raises(AuthorizationError):
        await make_post(owner="reader")


async def test_validation_is_reported_before_authorization(make_post):
    with pytest.raises(ValidationError):
        await make_post(owner="reader", title="")


async def test_slug_collision_gets_suffix(make_post):
    first = await make_post(title="Quorum sensing")
    second = await make_post(title="Quorum sensing", owner="other")

    assert first.slug == "quorum-sensing"
    assert second.slug.startswith("quorum-sensing-")
    assert second.slug != first.slug


async def test_create_uploads_inline_image(make_post, media, db):
    post = await make_post(image=PNG_DATA_URI)

    assert post.featured_image.startswith("https://res.cloudinary.com/")
    assert media.uploads == ["microbiology-blog/posts/img1"]
    raw = await db.posts.find_one({"slug": post.slug})
    assert raw["featured_image_id"] == "microbiology-blog/posts/img1"


async def test_create_survives_failed_upload(make_post, media):
    media.fail_upload = True
    post = await make_post(image=PNG_DATA_URI)

    assert post.featured_image is None


async def test_create_keeps_hosted_image_url(make_post, media):
    post = await make_post(image="https://cdn.example.org/culture.png")

    assert post.featured_image == "https://cdn.example.org/culture.png"
    assert media.uploads == []


async def test_create_rejects_unknown_image_reference(make_post):
    with pytest.raises(ValidationError):
        await make_post(image="ftp://example.org/culture.png")


async def test_create_publishes_events(make_post, events, recorded):
    await make_post()
    await events.drain()

    assert [type(e) for e in recorded] == [PostCreated, PostPublished]


# -- update ----------------------------------------------------------------

async def test_update_recomputes_derived_fields_and_keeps_slug(manager, make_post, users):
    post = await make_post()
    updated = await manager.update_post(
        users["author"], post.id, PostPatch(title="Entirely different title", content="three short words"),
    )

    assert updated.slug == post.slug
    assert updated.title == "Entirely different title"
    assert updated.word_count == 3
    assert "entirely" in updated.keywords
    assert updated.last_edited_at is not None


def test_patch_rejects_unknown_fields():
    with pytest.raises(SchemaValidationError):
        PostPatch.model_validate({"title": "ok", "views": 1000})
    with pytest.raises(SchemaValidationError):
        PostPatch.model_validate({"slug": "hijacked"})


async def test_update_by_other_researcher_is_forbidden(manager, make_post, users):
    post = await make_post()
    with pytest.raises(AuthorizationError):
        await manager.update_post(users["other"], post.id, PostPatch(title="Mine now"))


async def test_admin_status_change_is_stamped(manager, make_post, users):
    post = await make_post(status=PostStatus.DRAFT)
    updated = await manager.update_post(users["admin"], post.id, PostPatch(status=PostStatus.PUBLISHED))

    assert updated.status == PostStatus.PUBLISHED
    assert updated.moderated_by == users["admin"].id
    assert updated.moderated_at is not None


async def test_update_missing_post(manager, users):
    with pytest.raises(NotFoundError):
        await manager.update_post(users["author"], MISSING_ID, PostPatch(title="x"))
    with pytest.raises(NotFoundError):
        await manager.update_post(users["author"], "not-an-id", PostPatch(title="x"))


async def test_update_validation_precedes_existence(manager, users):
    with pytest.raises(ValidationError):
        await manager.update_post(users["author"], MISSING_ID, PostPatch(title=" "))


async def test_published_at_is_set_once(manager, make_post, users):
    author = users["author"]
    post = await make_post(status=PostStatus.DRAFT)

    published = await manager.update_post(author, post.id, PostPatch(status=PostStatus.PUBLISHED))
    first_published_at = published.published_at
    assert first_published_at is not None

    await manager.update_post(author, post.id, PostPatch(status=PostStatus.DRAFT))
    await manager.archive_post(author, post.id, "Needs revision")
    again = await manager.unarchive_post(author, post.id, "published")

    assert again.status == PostStatus.PUBLISHED
    assert again.published_at == first_published_at


async def test_failed_replacement_upload_keeps_current_image(manager, make_post, users, media):
    post = await make_post(image=PNG_DATA_URI)
    media.fail_upload = True

    with pytest.raises(ValidationError):
        await manager.update_post(users["author"], post.id, PostPatch(image=PNG_DATA_URI, title="Changed"))

    current = await manager.get_post(users["author"], post.id)
    assert current.featured_image == post.featured_image
    assert current.title == post.title
    assert media.deleted == []


async def test_replacement_image_deletes_previous_after_save(manager, make_post, users, media):
    post = await make_post(image=PNG_DATA_URI)
    updated = await manager.update_post(users["author"], post.id, PostPatch(image=PNG_DATA_URI))

    assert updated.featured_image != post.featured_image
    assert media.deleted == ["microbiology-blog/posts/img1"]


async def test_hosted_url_replacing_upload_deletes_previous(manager, make_post, users, media):
    post = await make_post(image=PNG_DATA_URI)
    updated = await manager.update_post(
        users["author"], post.id, PostPatch(image="https://cdn.example.org/plate.png"),
    )

    assert updated.featured_image == "https://cdn.example.org/plate.png"
    assert media.deleted == ["microbiology-blog/posts/img1"]


async def test_unchanged_image_is_not_deleted(manager, make_post, users, media, db):
    post = await make_post(image=PNG_DATA_URI)
    await manager.update_post(users["author"], post.id, PostPatch(title="New title"))
    await manager.update_post(users["author"], post.id, PostPatch(image=post.featured_image))

    assert media.deleted == []
    raw = await db.posts.find_one({"slug": post.slug})
    assert raw["featured_image_id"] == "microbiology-blog/posts/img1"


# -- archive / unarchive ---------------------------------------------------

async def test_owner_archive_hides_post_from_public(manager, make_post, users):
    post = await make_post()
    archived = await manager.archive_post(users["author"], post.id, "Outdated")

    assert archived.status == PostStatus.ARCHIVED
    assert archived.archive_reason == "Outdated"
    assert archived.moderated_by is None
    with pytest.raises(NotFoundError):
        await manager.get_post(None, post.id)


async def test_admin_archive_of_foreign_post_is_stamped(manager, make_post, users):
    post = await make_post()
    archived = await manager.archive_post(users["admin"], post.id, "Duplicate content")

    assert archived.moderated_by == users["admin"].id
    assert archived.moderated_at is not None


async def test_archive_by_stranger_is_forbidden(manager, make_post, users):
    post = await make_post()
    with pytest.raises(AuthorizationError):
        await manager.archive_post(users["reader"], post.id, "nope")


@pytest.mark.parametrize("caller", ["other", "reader"])
@pytest.mark.parametrize(
    "action",
    [
        lambda manager, user, post_id: manager.update_post(user, post_id, PostPatch(title="Taken over")),
        lambda manager, user, post_id: manager.archive_post(user, post_id, "Spam"),
        lambda manager, user, post_id: manager.unarchive_post(user, post_id, "published"),
    ],
    ids=["update", "archive", "unarchive"],
)
async def test_forbidden_changes_leave_post_untouched(manager, make_post, users, caller, action):
    post = await make_post(title="Sporulation under stress")
    await manager.archive_post(users["author"], post.id, "Outdated")

    with pytest.raises(AuthorizationError):
        await action(manager, users[caller], post.id)

    current = await manager.get_post(users["author"], post.id)
    assert current.title == "Sporulation under stress"
    assert current.status == PostStatus.ARCHIVED
    assert current.archive_reason == "Outdated"
    assert current.moderated_by is None


async def test_unarchive_clears_reason_and_defaults_to_draft(manager, make_post, users):
    post = await make_post()
    await manager.archive_post(users["author"], post.id, "Outdated")
    restored = await manager.unarchive_post(users["author"], post.id)

    assert restored.status == PostStatus.DRAFT
    assert not restored.archive_reason


@pytest.mark.parametrize("target", ["archived", "bogus"])
async def test_unarchive_rejects_invalid_target(manager, make_post, users, target):
    post = await make_post()
    with pytest.raises(ValidationError):
        await manager.unarchive_post(users["author"], post.id, target)


# -- offense overlay -------------------------------------------------------

async def test_offense_overlay_round_trip(manager, make_post, users):
    admin = users["admin"]
    post = await make_post()

    flagged = await manager.mark_offensive(admin, post.id, "Misleading claims")
    assert flagged.is_offensive is True
    assert flagged.offense_reason == "Misleading claims"
    assert flagged.offense_reported_by == admin.id
    assert flagged.offense_reported_at is not None
    assert flagged.status == PostStatus.PUBLISHED

    with pytest.raises(NotFoundError):
        await manager.get_post(None, post.id)
    assert (await manager.get_post(users["author"], post.id)).is_offensive

    cleared = await manager.remove_offense(admin, post.id)
    assert cleared.is_offensive is False
    assert cleared.offense_reason is None
    assert cleared.offense_reported_by == admin.id
    assert cleared.offense_resolved_by == admin.id
    assert cleared.offense_resolved_at is not None
    assert (await manager.get_post(None, post.id)).id == post.id


async def test_reflagging_clears_previous_resolution(manager, make_post, users):
    admin = users["admin"]
    post = await make_post()
    await manager.mark_offensive(admin, post.id, "Spam")
    await manager.remove_offense(admin, post.id)

    reflagged = await manager.mark_offensive(admin, post.id, "Spam again")

    assert reflagged.is_offensive is True
    assert reflagged.offense_reason == "Spam again"
    assert reflagged.offense_resolved_by is None
    assert reflagged.offense_resolved_at is None


async def test_only_admins_flag_posts(manager, make_post, users):
    post = await make_post()
    with pytest.raises(AuthorizationError):
        await manager.mark_offensive(users["author"], post.id, "self report")
    with pytest.raises(AuthorizationError):
        await manager.remove_offense(users["other"], post.id)


async def test_flagging_missing_post_is_not_found_even_for_non_admin(manager, users):
    with pytest.raises(NotFoundError):
        await manager.mark_offensive(users["reader"], MISSING_ID, "spam")


# -- featured / delete -----------------------------------------------------

async def test_set_featured_is_admin_only(manager, make_post, users):
    post = await make_post()
    with pytest.raises(AuthorizationError):
        await manager.set_featured(users["author"], post.id, True)

    featured = await manager.set_featured(users["admin"], post.id, True)
    assert featured.featured is True


async def test_delete_removes_post_comments_and_image(manager, make_post, users, db, media):
    post = await make_post(image=PNG_DATA_URI)
    await db.comments.insert_one({"post_id": post.id, "author_id": users["other"].id, "content": "Nice", "parent_id": None})

    await manager.delete_post(users["author"], post.id)

    with pytest.raises(NotFoundError):
        await manager.get_post(users["admin"], post.id)
    assert await db.comments.count_documents({"post_id": post.id}) == 0
    assert media.deleted == ["microbiology-blog/posts/img1"]


async def test_delete_succeeds_when_image_cleanup_fails(manager, make_post, users, media):
    post = await make_post(image=PNG_DATA_URI)
    media.fail_delete = True

    await manager.delete_post(users["admin"], post.id)

    with pytest.raises(NotFoundError):
        await manager.get_post(users["admin"], post.id)


async def test_delete_by_other_researcher_is_forbidden(manager, make_post, users):
    post = await make_post()
    with pytest.raises(AuthorizationError):
        await manager.delete_post(users["other"], post.id)


# -- likes / views ---------------------------------------------------------

async def test_toggle_like_round_trip(manager, make_post, users, db):
    post = await make_post()

    liked = await manager.toggle_like(users["reader"], post.id)
    assert (liked.likes, liked.is_liked) == (1, True)

    other = await manager.toggle_like(users["other"], post.id)
    assert (other.likes, other.is_liked) == (2, True)

    unliked = await manager.toggle_like(users["reader"], post.id)
    assert (unliked.likes, unliked.is_liked) == (1, False)

    raw = await db.posts.find_one({"slug": post.slug})
    assert raw["likes"] == [users["other"].id]
    assert raw["likes_count"] == 1


async def test_add_like_is_idempotent(manager, make_post, users):
    post = await make_post()
    repo = manager.posts

    assert await repo.add_like(post.id, users["reader"].id) is True
    assert await repo.add_like(post.id, users["reader"].id) is False
    raw = await repo.get(post.id)
    assert raw["likes"] == [users["reader"].id]
    assert raw["likes_count"] == 1


async def test_like_event_only_on_like(manager, make_post, users, events, recorded):
    post = await make_post()
    await events.drain()
    recorded.clear()

    await manager.toggle_like(users["reader"], post.id)
    await manager.toggle_like(users["reader"], post.id)
    await events.drain()

    assert [type(e) for e in recorded] == [PostLiked]


async def test_like_missing_post(manager, users):
    with pytest.raises(NotFoundError):
        await manager.toggle_like(users["reader"], MISSING_ID)


async def test_increment_view(manager, make_post):
    post = await make_post()
    for _ in range(3):
        result = await manager.increment_view(post.id)
    assert result.views == 3

    with pytest.raises(NotFoundError):
        await manager.increment_view(MISSING_ID)


async def test_create_from_plain_payload(manager, users, categories):
    data = PostCreate(
        title="Gut microbiome and diet",
        excerpt="  How fibre shapes the colon  ",
        content="Dietary fibre feeds commensal bacteria",
        category="virology",
        tags=["Microbiome"],
    )
    post = await manager.create_post(users["admin"], data)

    assert post.status == PostStatus.DRAFT
    assert post.excerpt == "How fibre shapes the colon"
    assert post.tags == ["microbiome"]
