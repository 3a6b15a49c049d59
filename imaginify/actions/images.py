import logging
import math
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from imaginify.errors import NotFoundError, UnauthorizedError, ValidationFailure, handle_error
from imaginify.models.image import Image
from imaginify.models.schemas import ImageCreate, ImagePage, ImageOut, ImageUpdate
from imaginify.models.user import User
from imaginify.services.cloudinary_service import CloudinaryService
from imaginify.transformations.configs import base_config, parse_config, transformation_type

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 9

# Columns an update may change but never clear
REQUIRED_FIELDS = ("title", "public_id", "transformation_type", "secure_url")


def _normalized_config(type_, config):
    parsed = parse_config(type_, config)
    return parsed.to_config() if parsed is not None else None


def _config_for_new_type(type_, config):
    # A stored config that does not fit the new type falls back to its base config
    try:
        return _normalized_config(type_, config)
    except ValidationFailure:
        base = base_config(type_)
        return base.to_config() if base is not None else None


def _owned_image(db: Session, image_id: int, user_id: int) -> Image:
    image = db.get(Image, image_id)
    if image is None:
        raise NotFoundError("Image not found")
    if image.author_id != user_id:
        raise UnauthorizedError("Unauthorized or image not found")
    return image


def add_image(db: Session, image: ImageCreate, user_id: int) -> Image:
    try:
        author = db.get(User, user_id)
        if author is None:
            raise NotFoundError("User not found")

        data = image.model_dump()
        data["transformation_type"] = transformation_type(image.transformation_type).value
        data["config"] = _normalized_config(image.transformation_type, image.config)

        new_image = Image(**data, author_id=author.id)
        db.add(new_image)
        db.commit()
        db.refresh(new_image)
        logger.info(f"Image {new_image.id} saved for user {author.id}")
        return new_image
    except Exception as e:
        db.rollback()
        handle_error(e)


def update_image(db: Session, image_id: int, image: ImageUpdate, user_id: int) -> Image:
    try:
        image_to_update = _owned_image(db, image_id, user_id)

        changes = image.model_dump(exclude_unset=True)
        cleared = sorted(field for field in REQUIRED_FIELDS if field in changes and changes[field] is None)
        if cleared:
            raise ValidationFailure(f"Fields cannot be null: {', '.join(cleared)}")

        type_ = changes.get("transformation_type", image_to_update.transformation_type)
        if "transformation_type" in changes:
            changes["transformation_type"] = transformation_type(type_).value
        if "config" in changes:
            changes["config"] = _normalized_config(type_, changes["config"])
        elif changes.get("transformation_type", image_to_update.transformation_type) != image_to_update.transformation_type:
            changes["config"] = _config_for_new_type(changes["transformation_type"], image_to_update.config)

        for field, value in changes.items():
            setattr(image_to_update, field, value)

        db.commit()
        db.refresh(image_to_update)
        logger.info(f"Image {image_to_update.id} updated by user {user_id}")
        return image_to_update
    except Exception as e:
        db.rollback()
        handle_error(e)


def delete_image(db: Session, image_id: int, user_id: int, cloudinary: Optional[CloudinaryService] = None) -> None:
    try:
        image = _owned_image(db, image_id, user_id)
        public_id = image.public_id
        db.delete(image)
        db.commit()
        logger.info(f"Image {image_id} deleted by user {user_id}")
    except Exception as e:
        db.rollback()
        handle_error(e)

    if cloudinary is not None:
        # Other records may still point at the same asset.
        try:
            still_used = db.query(Image).filter(Image.public_id == public_id).count()
            if not still_used:
                cloudinary.destroy_image(public_id)
        except Exception as e:
            logger.warning(f"Image {image_id} deleted but asset {public_id} was not removed: {e}")


def get_image_by_id(db: Session, image_id: int) -> Image:
    try:
        image = (
            db.query(Image)
            .options(joinedload(Image.author))
            .filter(Image.id == image_id)
            .first()
        )
        if image is None:
            raise NotFoundError("Image not found")
        return image
    except Exception as e:
        handle_error(e)


def _check_paging(page: int, limit: int):
    if page < 1:
        raise ValidationFailure(f"Page must be 1 or greater, got {page}")
    if limit < 1:
        raise ValidationFailure(f"Page size must be 1 or greater, got {limit}")


def _page_of(query, page: int, limit: int):
    skip_amount = (page - 1) * limit
    return (
        query.options(joinedload(Image.author))
        .order_by(Image.updated_at.desc(), Image.id.desc())
        .offset(skip_amount)
        .limit(limit)
        .all()
    )


def get_all_images(
    db: Session,
    cloudinary: Optional[CloudinaryService],
    limit: int = DEFAULT_PAGE_SIZE,
    page: int = 1,
    search_query: str = "",
) -> ImagePage:
    """One page of images, most recently updated first.

    A non-empty ``search_query`` is resolved against the provider's search
    index first and the listing is restricted to the matching assets.
    """
    try:
        _check_paging(page, limit)
        query = db.query(Image)

        search_query = (search_query or "").strip()
        if search_query:
            if cloudinary is None:
                raise ValidationFailure("Search requires an image provider")
            resource_ids = cloudinary.search_public_ids(search_query)
            query = query.filter(Image.public_id.in_(resource_ids))

        images = _page_of(query, page, limit)
        total_images = query.order_by(None).count()
        saved_images = db.query(Image).count()

        return ImagePage(
            data=[ImageOut.model_validate(image) for image in images],
            total_pages=math.ceil(total_images / limit),
            saved_images=saved_images,
        )
    except Exception as e:
        handle_error(e)


def get_user_images(db: Session, user_id: int, limit: int = DEFAULT_PAGE_SIZE, page: int = 1) -> ImagePage:
    try:
        _check_paging(page, limit)
        query = db.query(Image).filter(Image.author_id == user_id)
        images = _page_of(query, page, limit)
        total_images = query.count()

        return ImagePage(
            data=[ImageOut.model_validate(image) for image in images],
            total_pages=math.ceil(total_images / limit),
        )
    except Exception as e:
        handle_error(e)
