"""Utility modules for part-markers."""

from part_markers.utils.cv_utils import (
    # Type aliases
    GrayImage,
    Image,
    # Dataclasses
    ImageInfo,
    # Image I/O
    decode_image,
    encode_png,
    get_image_info,
    load_image,
    # Pixel helpers
    local_mean,
    resize_area,
    to_grayscale,
)

__all__ = [
    # Type aliases
    "Image",
    "GrayImage",
    # Dataclasses
    "ImageInfo",
    # Image I/O
    "load_image",
    "decode_image",
    "encode_png",
    "get_image_info",
    # Pixel helpers
    "to_grayscale",
    "local_mean",
    "resize_area",
]
