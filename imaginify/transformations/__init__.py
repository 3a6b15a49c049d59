from .constants import (
    ASPECT_RATIO_OPTIONS,
    DEFAULT_FORM_VALUES,
    TRANSFORMATION_TYPES,
    TransformationType,
)
from .merge import deep_merge
from .configs import (
    base_config,
    field_edit,
    get_image_size,
    merge_config,
    parse_config,
    transformation_type,
)

__all__ = [
    "ASPECT_RATIO_OPTIONS",
    "DEFAULT_FORM_VALUES",
    "TRANSFORMATION_TYPES",
    "TransformationType",
    "base_config",
    "deep_merge",
    "field_edit",
    "get_image_size",
    "merge_config",
    "parse_config",
    "transformation_type",
]
