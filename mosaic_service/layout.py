"""Layout planning for 2-4 image mosaics.

Pure geometry: given the source sizes in request order, decide the canvas
size, which region each image occupies and which part of each image is kept.
Nothing here touches pixels or does I/O, so the same sizes always produce the
same plan.

Arrangements by image count:

    2 images  SIDE_BY_SIDE  |0|1|          STACKED  |0|
                                                    |1|

    3 images  PRIMARY_LEFT  |P|a|          PRIMARY_TOP  | P |
                            | |b|                       |a|b|

    4 images  GRID          |0|1|
                            |2|3|

P is the most square image; a and b are the other two in request order.
Every image is center-cropped to its cell's aspect ratio and scaled to fill
the cell exactly, so cells tile the canvas with no borders unless a gutter is
requested.

Size guards run in a fixed order. A 4-image grid whose canvas reaches
``grid_downscale_threshold`` on either side is halved first; the result is
then scaled down to ``max_dimension`` on its longest side. Grids of very large
sources therefore end up smaller than half: four 5000x5000 images make a
10000x10000 grid, halved to 5000x5000, capped to 4000x4000.
"""

import math
from dataclasses import dataclass
from enum import Enum
from fractions import Fraction
from typing import Sequence

GRID_DOWNSCALE_THRESHOLD = 2000
MAX_CANVAS_DIMENSION = 4000
MIN_CANVAS_DIMENSION = 2


class Arrangement(str, Enum):
    SIDE_BY_SIDE = "side_by_side"
    STACKED = "stacked"
    PRIMARY_LEFT = "primary_left"
    PRIMARY_TOP = "primary_top"
    GRID = "grid"


@dataclass(frozen=True)
class Size:
    width: int
    height: int


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def right(self) -> int:
        return self.x + self.width

    @property
    def bottom(self) -> int:
        return self.y + self.height

    def intersects(self, other: "Rect") -> bool:
        return not (
            self.right <= other.x or other.right <= self.x
            or self.bottom <= other.y or other.bottom <= self.y
        )


@dataclass(frozen=True)
class Cell:
    """Where one source image goes and which part of it is used."""

    slot_index: int
    dest_x: int
    dest_y: int
    dest_width: int
    dest_height: int
    source_crop: Rect

    @property
    def dest(self) -> Rect:
        return Rect(self.dest_x, self.dest_y, self.dest_width, self.dest_height)


@dataclass(frozen=True)
class LayoutPlan:
    canvas_width: int
    canvas_height: int
    cells: tuple[Cell, ...]
    arrangement: Arrangement


def plan(
    sizes: Sequence[tuple[int, int]],
    gutter: int = 0,
    grid_downscale_threshold: int = GRID_DOWNSCALE_THRESHOLD,
    max_dimension: int = MAX_CANVAS_DIMENSION,
) -> LayoutPlan:
    """Build the layout plan for ``(width, height)`` pairs in request order.

    Cells in the returned plan follow the input order: ``cells[i]`` belongs
    to ``sizes[i]``.
    """
    images = [Size(int(w), int(h)) for w, h in sizes]
    if not (2 <= len(images) <= 4):
        raise ValueError(f"can only lay out 2 to 4 images, got {len(images)}")
    if any(s.width <= 0 or s.height <= 0 for s in images):
        raise ValueError("image dimensions must be positive")
    if gutter < 0:
        raise ValueError("gutter must be >= 0")

    if len(images) == 2:
        arrangement, order, content = _plan_two(images)
    elif len(images) == 3:
        arrangement, order, content = _plan_three(images)
    else:
        arrangement, order, content = _plan_four(images)
        if content.width >= grid_downscale_threshold or content.height >= grid_downscale_threshold:
            content = Size(content.width // 2, content.height // 2)

    content = _fit_within(content, max_dimension)

    regions = _regions(arrangement, content, gutter)
    canvas_width = max(r.right for r in regions)
    canvas_height = max(r.bottom for r in regions)

    cells = [None] * len(images)
    for region, slot in zip(regions, order):
        cells[slot] = Cell(
            slot_index=slot,
            dest_x=region.x,
            dest_y=region.y,
            dest_width=region.width,
            dest_height=region.height,
            source_crop=center_crop(images[slot], Size(region.width, region.height)),
        )

    return LayoutPlan(
        canvas_width=canvas_width,
        canvas_height=canvas_height,
        cells=tuple(cells),
        arrangement=arrangement,
    )


def is_landscape_dominant(images: Sequence[Size]) -> bool:
    """True when the geometric-mean aspect ratio of ``images`` is above 1.0.

    Compared as integer products so ties are exact.
    """
    return math.prod(s.width for s in images) > math.prod(s.height for s in images)


def squareness(size: Size) -> Fraction:
    """Long side over short side; 1 for a perfect square."""
    return Fraction(max(size.width, size.height), min(size.width, size.height))


def pick_primary(images: Sequence[Size]) -> int:
    """Index of the image closest to square. Ties go to the earliest image."""
    return min(range(len(images)), key=lambda i: squareness(images[i]))


def center_crop(source: Size, target: Size) -> Rect:
    """Largest centered rectangle of ``source`` with the aspect ratio of ``target``."""
    if source.width * target.height > target.width * source.height:
        # source is wider than the target, trim the sides
        width = max(1, min(source.width, round(source.height * target.width / target.height)))
        return Rect((source.width - width) // 2, 0, width, source.height)

    height = max(1, min(source.height, round(source.width * target.height / target.width)))
    return Rect(0, (source.height - height) // 2, source.width, height)


def _width_at(size: Size, height: float) -> float:
    return height * size.width / size.height


def _height_at(size: Size, width: float) -> float:
    return width * size.height / size.width


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values)


def _plan_two(images: list[Size]) -> tuple[Arrangement, list[int], Size]:
    if is_landscape_dominant(images):
        width = max(s.width for s in images)
        half = round(_mean([_height_at(s, width) for s in images]))
        return Arrangement.STACKED, [0, 1], Size(width, 2 * half)

    height = max(s.height for s in images)
    half = round(_mean([_width_at(s, height) for s in images]))
    return Arrangement.SIDE_BY_SIDE, [0, 1], Size(2 * half, height)


def _plan_three(images: list[Size]) -> tuple[Arrangement, list[int], Size]:
    primary = pick_primary(images)
    others = [i for i in range(len(images)) if i != primary]
    order = [primary] + others
    main = images[primary]

    if main.width > main.height:
        width = max(s.width for s in images)
        secondary = _mean([_height_at(images[i], width / 2) for i in others])
        half = round(_mean([_height_at(main, width), secondary]))
        return Arrangement.PRIMARY_TOP, order, Size(width, 2 * half)

    height = max(s.height for s in images)
    secondary = _mean([_width_at(images[i], height / 2) for i in others])
    half = round(_mean([_width_at(main, height), secondary]))
    return Arrangement.PRIMARY_LEFT, order, Size(2 * half, height)


def _plan_four(images: list[Size]) -> tuple[Arrangement, list[int], Size]:
    cell_height = max(s.height for s in images)
    cell_width = round(_mean([_width_at(s, cell_height) for s in images]))
    return Arrangement.GRID, [0, 1, 2, 3], Size(2 * cell_width, 2 * cell_height)


def _fit_within(content: Size, max_dimension: int) -> Size:
    longest = max(content.width, content.height)
    if longest > max_dimension:
        factor = max_dimension / longest
        content = Size(round(content.width * factor), round(content.height * factor))
    return Size(
        max(MIN_CANVAS_DIMENSION, content.width),
        max(MIN_CANVAS_DIMENSION, content.height),
    )


def _split(start: int, length: int, gutter: int) -> tuple[tuple[int, int], tuple[int, int]]:
    """Split ``length`` (which includes the gutter) into two (offset, extent) spans."""
    first = (length - gutter) // 2
    second = length - gutter - first
    return (start, first), (start + first + gutter, second)


def _regions(arrangement: Arrangement, content: Size, gutter: int) -> list[Rect]:
    """Cell rectangles in placement order for a canvas of ``content`` plus gutters."""
    width = content.width
    height = content.height

    if arrangement is Arrangement.SIDE_BY_SIDE:
        (x0, w0), (x1, w1) = _split(0, width + gutter, gutter)
        return [Rect(x0, 0, w0, height), Rect(x1, 0, w1, height)]

    if arrangement is Arrangement.STACKED:
        (y0, h0), (y1, h1) = _split(0, height + gutter, gutter)
        return [Rect(0, y0, width, h0), Rect(0, y1, width, h1)]

    if arrangement is Arrangement.PRIMARY_LEFT:
        total_height = height + gutter
        (x0, w0), (x1, w1) = _split(0, width + gutter, gutter)
        (y0, h0), (y1, h1) = _split(0, total_height, gutter)
        return [Rect(x0, 0, w0, total_height), Rect(x1, y0, w1, h0), Rect(x1, y1, w1, h1)]

    if arrangement is Arrangement.PRIMARY_TOP:
        total_width = width + gutter
        (y0, h0), (y1, h1) = _split(0, height + gutter, gutter)
        (x0, w0), (x1, w1) = _split(0, total_width, gutter)
        return [Rect(0, y0, total_width, h0), Rect(x0, y1, w0, h1), Rect(x1, y1, w1, h1)]

    (x0, w0), (x1, w1) = _split(0, width + gutter, gutter)
    (y0, h0), (y1, h1) = _split(0, height + gutter, gutter)
    return [
        Rect(x0, y0, w0, h0), Rect(x1, y0, w1, h0),
        Rect(x0, y1, w0, h1), Rect(x1, y1, w1, h1),
    ]
