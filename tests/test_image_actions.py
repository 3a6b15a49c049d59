import pytest

from imaginify.actions.images import (
    add_image,
    delete_image,
    get_all_images,
    get_image_by_id,
    get_user_images,
    update_image,
)
from imaginify.errors import AppError, NotFoundError, UnauthorizedError, UpstreamError, ValidationFailure
from imaginify.models.image import Image
from imaginify.models.schemas import ImageCreate, ImageUpdate


def image_data(n=0, **overrides):
    data = {
        "title": f"Image {n}",
        "public_id": f"imaginify/img{n}",
        "transformation_type": "recolor",
        "width": 640,
        "height": 480,
        "config": {"recolor": {"prompt": "car", "to": "red"}},
        "secure_url": f"https://res.cloudinary.com/demo/image/upload/imaginify/img{n}",
        "transformation_url": f"https://res.cloudinary.com/demo/image/upload/e_gen_recolor/imaginify/img{n}",
        "prompt": "car",
        "color": "red",
    }
    data.update(overrides)
    return ImageCreate(**data)


def seed(db, user, count):
    return [add_image(db, image_data(n), user.id) for n in range(count)]


def test_add_image_normalizes_config(db, user_factory):
    user = user_factory()
    image = add_image(db, image_data(), user.id)

    assert image.id is not None
    assert image.author_id == user.id
    assert image.config == {"recolor": {"prompt": "car", "to": "red", "multiple": True}}


def test_add_image_for_unknown_user(db):
    with pytest.raises(NotFoundError):
        add_image(db, image_data(), 999)


def test_add_image_with_malformed_config(db, user_factory):
    user = user_factory()
    with pytest.raises(ValidationFailure):
        add_image(db, image_data(config={"restore": True}), user.id)
    assert db.query(Image).count() == 0


def test_get_image_by_id_populates_author(db, user_factory):
    user = user_factory(first_name="Ada")
    image = add_image(db, image_data(), user.id)

    found = get_image_by_id(db, image.id)
    assert found.author.first_name == "Ada"

    with pytest.raises(NotFoundError):
        get_image_by_id(db, image.id + 100)


def test_owner_can_update(db, user_factory):
    user = user_factory()
    image = add_image(db, image_data(), user.id)

    updated = update_image(db, image.id, ImageUpdate(title="Renamed", config={"recolor": {"to": "blue"}}), user.id)

    assert updated.title == "Renamed"
    assert updated.config["recolor"]["to"] == "blue"
    assert updated.color == "red"


def test_update_by_someone_else_is_rejected_and_changes_nothing(db, user_factory):
    owner, other = user_factory(), user_factory()
    image = add_image(db, image_data(title="Original"), owner.id)

    with pytest.raises(UnauthorizedError) as exc:
        update_image(db, image.id, ImageUpdate(title="Hijacked"), other.id)
    assert exc.value.status_code == 403

    db.expire_all()
    assert db.get(Image, image.id).title == "Original"


def test_update_missing_image(db, user_factory):
    user = user_factory()
    with pytest.raises(NotFoundError):
        update_image(db, 42, ImageUpdate(title="x"), user.id)


def test_delete_by_someone_else_is_rejected(db, user_factory):
    owner, other = user_factory(), user_factory()
    image = add_image(db, image_data(), owner.id)

    with pytest.raises(UnauthorizedError):
        delete_image(db, image.id, other.id)
    assert db.get(Image, image.id) is not None


def test_delete_removes_record_and_unused_asset(db, user_factory, cloudinary):
    user = user_factory()
    first = add_image(db, image_data(1), user.id)
    shared = add_image(db, image_data(2), user.id)
    add_image(db, image_data(2, title="Copy"), user.id)

    delete_image(db, first.id, user.id, cloudinary)
    delete_image(db, shared.id, user.id, cloudinary)

    assert db.get(Image, first.id) is None
    assert cloudinary.destroyed == ["imaginify/img1"]


def test_pagination_over_twenty_records(db, user_factory):
    user = user_factory()
    seed(db, user, 20)

    first = get_all_images(db, None, limit=9, page=1)
    last = get_all_images(db, None, limit=9, page=3)
    beyond = get_all_images(db, None, limit=9, page=4)

    assert len(first.data) == 9
    assert first.total_pages == 3
    assert first.saved_images == 20
    assert len(last.data) == 2
    assert beyond.data == []
    assert beyond.total_pages == 3


def test_listing_is_most_recent_first(db, user_factory):
    user = user_factory()
    images = seed(db, user, 3)

    page = get_all_images(db, None, limit=9, page=1)
    assert [i.id for i in page.data] == [images[2].id, images[1].id, images[0].id]


def test_search_restricts_to_provider_matches(db, user_factory, cloudinary):
    user = user_factory()
    seed(db, user, 5)
    cloudinary.search_results = ["imaginify/img1", "imaginify/img3", "imaginify/elsewhere"]

    page = get_all_images(db, cloudinary, search_query="car")

    assert cloudinary.searches == ["car"]
    assert sorted(i.public_id for i in page.data) == ["imaginify/img1", "imaginify/img3"]
    assert page.total_pages == 1
    assert page.saved_images == 5


def test_empty_search_lists_everything_without_calling_provider(db, user_factory, cloudinary):
    user = user_factory()
    seed(db, user, 2)

    page = get_all_images(db, cloudinary, search_query="  ")

    assert len(page.data) == 2
    assert cloudinary.searches == []


@pytest.mark.parametrize("page, limit", [(0, 9), (1, 0)])
def test_bad_paging_is_a_validation_failure(db, page, limit):
    with pytest.raises(ValidationFailure):
        get_all_images(db, None, limit=limit, page=page)


def test_user_images_only_include_own(db, user_factory):
    me, other = user_factory(), user_factory()
    seed(db, me, 4)
    seed(db, other, 3)

    page = get_user_images(db, me.id, limit=3, page=2)

    assert len(page.data) == 1
    assert page.total_pages == 2
    assert all(i.author_id == me.id for i in page.data)


def test_database_errors_are_wrapped(db, user_factory, monkeypatch):
    user = user_factory()

    def broken_commit():
        raise RuntimeError("connection reset")

    monkeypatch.setattr(db, "commit", broken_commit)

    with pytest.raises(AppError) as exc:
        add_image(db, image_data(), user.id)
    assert exc.value.code == "RUNTIMEERROR"
    assert exc.value.status_code == 500
    assert exc.value.to_dict() == {"error": "RUNTIMEERROR", "detail": "An unexpected error occurred."}


@pytest.mark.parametrize("field", ["title", "public_id", "transformation_type", "secure_url"])
def test_update_cannot_clear_required_fields(db, user_factory, field):
    user = user_factory()
    image = add_image(db, image_data(), user.id)

    with pytest.raises(ValidationFailure):
        update_image(db, image.id, ImageUpdate(**{field: None}), user.id)

    db.expire_all()
    assert getattr(db.get(Image, image.id), field) is not None


def test_type_change_replaces_a_config_that_no_longer_fits(db, user_factory):
    user = user_factory()
    image = add_image(db, image_data(transformation_type="restore", config={"restore": True}), user.id)

    updated = update_image(db, image.id, ImageUpdate(transformation_type="recolor"), user.id)

    assert updated.transformation_type == "recolor"
    assert updated.config == {"recolor": {"prompt": "", "to": "", "multiple": True}}


def test_type_change_with_new_config(db, user_factory):
    user = user_factory()
    image = add_image(db, image_data(transformation_type="restore", config={"restore": True}), user.id)

    updated = update_image(
        db, image.id, ImageUpdate(transformation_type="remove", config={"remove": {"prompt": "dog"}}), user.id
    )

    assert updated.config == {"remove": {"prompt": "dog", "removeShadow": True, "multiple": True}}


def test_delete_survives_asset_cleanup_failure(db, user_factory, cloudinary, monkeypatch, caplog):
    user = user_factory()
    image = add_image(db, image_data(), user.id)

    def unreachable(public_id):
        raise UpstreamError("Cloudinary delete failed: timeout")

    monkeypatch.setattr(cloudinary, "destroy_image", unreachable)

    delete_image(db, image.id, user.id, cloudinary)

    assert db.get(Image, image.id) is None
    assert "was not removed" in caplog.text
