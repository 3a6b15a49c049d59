"""Per-type transformation configurations, stored under the provider-facing keys."""
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from imaginify.errors import ValidationFailure
from imaginify.transformations.constants import (
    ASPECT_RATIO_OPTIONS,
    DEFAULT_IMAGE_SIZE,
    TRANSFORMATION_TYPES,
    TransformationType,
)
from imaginify.transformations.merge import deep_merge


class _Config(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    def to_config(self) -> Dict[str, Any]:
        """Provider-facing dict, without the type tag."""
        return self.model_dump(by_alias=True, exclude={"type"})

    def set_fields(self) -> Dict[str, Any]:
        """Only the keys that were explicitly given, recursively."""
        return self.model_dump(by_alias=True, exclude_unset=True, exclude={"type"})


class RemoveOptions(_Config):
    prompt: str = ""
    remove_shadow: bool = Field(True, alias="removeShadow")
    multiple: bool = True


class RecolorOptions(_Config):
    prompt: str = ""
    to: str = ""
    multiple: bool = True


class RestoreConfig(_Config):
    type: Literal["restore"] = "restore"
    restore: bool = True


class FillConfig(_Config):
    type: Literal["fill"] = "fill"
    fill_background: bool = Field(True, alias="fillBackground")


class RemoveConfig(_Config):
    type: Literal["remove"] = "remove"
    remove: RemoveOptions = Field(default_factory=RemoveOptions)


class RecolorConfig(_Config):
    type: Literal["recolor"] = "recolor"
    recolor: RecolorOptions = Field(default_factory=RecolorOptions)


class RemoveBackgroundConfig(_Config):
    type: Literal["removeBackground"] = "removeBackground"
    remove_background: bool = Field(True, alias="removeBackground")


CONFIG_MODELS = {
    TransformationType.RESTORE: RestoreConfig,
    TransformationType.FILL: FillConfig,
    TransformationType.REMOVE: RemoveConfig,
    TransformationType.RECOLOR: RecolorConfig,
    TransformationType.REMOVE_BACKGROUND: RemoveBackgroundConfig,
}

# Form field name -> key inside the type's options object
_FIELD_KEYS = {"prompt": "prompt", "color": "to"}


def transformation_type(value) -> TransformationType:
    try:
        return TransformationType(value)
    except ValueError:
        raise ValidationFailure(f"Unknown transformation type: {value}") from None


def parse_config(type_, data: Optional[Dict[str, Any]]):
    if not data:
        return None
    model = CONFIG_MODELS[transformation_type(type_)]
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationFailure(f"Invalid {model.__name__} payload: {e.errors()}") from e


def base_config(type_):
    return parse_config(type_, TRANSFORMATION_TYPES[transformation_type(type_)]["config"])


def merge_config(existing, pending):
    """Merge ``pending`` over ``existing`` for configurations of the same type.

    Only fields the pending configuration explicitly set take part, so a
    half-filled edit never resets the committed values it did not touch.
    The result remembers the union of both sides' set fields.
    """
    if pending is None:
        return existing
    if existing is None:
        return pending.model_copy(deep=True)
    if existing.type != pending.type:
        raise ValidationFailure(f"Cannot merge a {pending.type} configuration into {existing.type}")

    # Unset fields hold their defaults on both sides, so merging the set
    # fields alone gives the same values and keeps track of what was set.
    merged = deep_merge(existing.set_fields(), pending.set_fields())
    return type(existing).model_validate(merged)


def field_edit(type_, field_name: str, value: str):
    """The pending configuration produced by typing ``value`` into a form field."""
    type_ = transformation_type(type_)
    key = _FIELD_KEYS.get(field_name)
    if key is None or type_ not in (TransformationType.REMOVE, TransformationType.RECOLOR):
        raise ValidationFailure(f"Field {field_name!r} does not configure {type_.value}")
    if type_ is TransformationType.REMOVE and key != "prompt":
        raise ValidationFailure("Object removal only takes a prompt")
    return parse_config(type_, {type_.value: {key: value}})


def get_image_size(type_, image, dimension: str) -> int:
    """Width or height to render ``image`` at for the given transformation type."""
    if dimension not in ("width", "height"):
        raise ValidationFailure(f"Unknown dimension: {dimension}")
    if image is None:
        return DEFAULT_IMAGE_SIZE
    if transformation_type(type_) is TransformationType.FILL:
        option = ASPECT_RATIO_OPTIONS.get(_attr(image, "aspect_ratio") or "")
        return (option or {}).get(dimension) or DEFAULT_IMAGE_SIZE
    return _attr(image, dimension) or DEFAULT_IMAGE_SIZE


def _attr(obj, name):
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)
