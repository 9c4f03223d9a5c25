"""Object-detection annotation schema.

Boxes are stored in normalized image coordinates so that resizing an image
never invalidates its annotations.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class BoundingBox(BaseModel, frozen=True):
    """Axis-aligned box; ``x``/``y`` is the top-left corner, all in [0, 1]."""

    x: float = Field(ge=0.0, le=1.0)
    y: float = Field(ge=0.0, le=1.0)
    width: float = Field(ge=0.0, le=1.0)
    height: float = Field(ge=0.0, le=1.0)

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    @classmethod
    def from_center_pixels(
        cls,
        center_x: float,
        center_y: float,
        width: float,
        height: float,
        image_width: int,
        image_height: int,
    ) -> BoundingBox:
        """Build a normalized box from pixel-space centre coordinates.

        The box is clipped to the image so slightly out-of-frame annotations
        remain valid.
        """
        left = min(1.0, max(0.0, (center_x - width / 2) / image_width))
        top = min(1.0, max(0.0, (center_y - height / 2) / image_height))
        right = min(1.0, (center_x + width / 2) / image_width)
        bottom = min(1.0, (center_y + height / 2) / image_height)
        return cls(
            x=left,
            y=top,
            width=max(0.0, right - left),
            height=max(0.0, bottom - top),
        )


class ImageAnnotation(BaseModel, frozen=True):
    """A single labeled box on an image."""

    identifier: int = Field(ge=0)
    bounding_box: BoundingBox
    confidence: float = 1.0
