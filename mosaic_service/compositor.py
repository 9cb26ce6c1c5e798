import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Sequence

import cv2
import numpy as np

from mosaic_service.layout import Cell, LayoutPlan
from mosaic_service.models import SourceImage

logger = logging.getLogger(__name__)

BACKGROUND = (0, 0, 0, 255)


def create_canvas(width: int, height: int) -> np.ndarray:
    canvas = np.empty((height, width, 4), dtype=np.uint8)
    canvas[:] = BACKGROUND
    return canvas


def flatten(pixels: np.ndarray) -> np.ndarray:
    """Blend RGBA pixels over the black background; the result is fully opaque."""
    alpha = pixels[:, :, 3:4]
    if alpha.min() == 255:
        return pixels

    flat = np.empty_like(pixels)
    flat[:, :, :3] = (pixels[:, :, :3].astype(np.uint16) * alpha + 127) // 255
    flat[:, :, 3] = 255
    return flat


def render_cell(image: SourceImage, cell: Cell) -> np.ndarray:
    """Crop ``image`` to the cell's source rectangle and scale it to the cell size."""
    crop = cell.source_crop
    region = flatten(image.pixels[crop.y:crop.bottom, crop.x:crop.right])

    if region.shape[1] == cell.dest_width and region.shape[0] == cell.dest_height:
        return region

    start = time.perf_counter()
    resized = cv2.resize(
        np.ascontiguousarray(region),
        (cell.dest_width, cell.dest_height),
        interpolation=cv2.INTER_LINEAR,
    )
    logger.debug(
        f"Resized {image.ref} {region.shape[1]}x{region.shape[0]} -> "
        f"{cell.dest_width}x{cell.dest_height} in {(time.perf_counter() - start) * 1000:.0f}ms"
    )
    return resized


def composite(images: Sequence[SourceImage], plan: LayoutPlan, workers: int = 4) -> np.ndarray:
    """
    Paint every image into its cell on a fresh canvas.

    Cells never overlap, so each worker writes its own slice of the shared
    canvas array. ``images[i]`` always lands in ``plan.cells[i]``.

    Returns:
        RGBA canvas of shape (canvas_height, canvas_width, 4).
    """
    if len(images) != len(plan.cells):
        raise ValueError(f"plan has {len(plan.cells)} cells but got {len(images)} images")

    canvas = create_canvas(plan.canvas_width, plan.canvas_height)

    def paint(slot: int) -> None:
        cell = plan.cells[slot]
        canvas[cell.dest_y:cell.dest_y + cell.dest_height,
               cell.dest_x:cell.dest_x + cell.dest_width] = render_cell(images[slot], cell)

    slots = range(len(plan.cells))
    if workers <= 1:
        for slot in slots:
            paint(slot)
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(plan.cells))) as pool:
            # list() surfaces the first exception raised by a worker
            list(pool.map(paint, slots))

    return canvas
