from enum import Enum


class TransformationType(str, Enum):
    RESTORE = "restore"
    FILL = "fill"
    REMOVE = "remove"
    RECOLOR = "recolor"
    REMOVE_BACKGROUND = "removeBackground"


TRANSFORMATION_TYPES = {
    TransformationType.RESTORE: {
        "type": "restore",
        "title": "Restore Image",
        "subtitle": "Refine images by removing noise and imperfections",
        "config": {"restore": True},
        "icon": "image.svg",
    },
    TransformationType.REMOVE_BACKGROUND: {
        "type": "removeBackground",
        "title": "Background Remove",
        "subtitle": "Removes the background of the image using AI",
        "config": {"removeBackground": True},
        "icon": "camera.svg",
    },
    TransformationType.FILL: {
        "type": "fill",
        "title": "Generative Fill",
        "subtitle": "Enhance an image's dimensions using AI outpainting",
        "config": {"fillBackground": True},
        "icon": "stars.svg",
    },
    TransformationType.REMOVE: {
        "type": "remove",
        "title": "Object Remove",
        "subtitle": "Identify and eliminate objects from images",
        "config": {"remove": {"prompt": "", "removeShadow": True, "multiple": True}},
        "icon": "scan.svg",
    },
    TransformationType.RECOLOR: {
        "type": "recolor",
        "title": "Object Recolor",
        "subtitle": "Identify and recolor objects from the image",
        "config": {"recolor": {"prompt": "", "to": "", "multiple": True}},
        "icon": "filter.svg",
    },
}

ASPECT_RATIO_OPTIONS = {
    "1:1": {"aspect_ratio": "1:1", "label": "Square (1:1)", "width": 1000, "height": 1000},
    "3:4": {"aspect_ratio": "3:4", "label": "Standard Portrait (3:4)", "width": 1000, "height": 1334},
    "9:16": {"aspect_ratio": "9:16", "label": "Phone Portrait (9:16)", "width": 1000, "height": 1778},
}

DEFAULT_FORM_VALUES = {
    "title": "",
    "aspect_ratio": "",
    "color": "",
    "prompt": "",
    "public_id": "",
}

DEFAULT_IMAGE_SIZE = 1000
