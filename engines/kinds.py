from enum import Enum


class EngineKind(str, Enum):
    IMAGE_MAGICK = "image_magick"
    VIPS = "vips"
