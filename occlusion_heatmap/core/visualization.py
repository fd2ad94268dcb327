# Copyright 2017 Google Inc. All Rights Reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

from .base import check_alpha_grid
from .base import HEATMAP_SIZE
from .base import OUTLINE_THRESHOLD
from .outline import ContourToPolygon
from .outline import TraceOutlines
import numpy as np
from PIL import Image
from PIL import ImageColor
from PIL import ImageDraw
from skimage.transform import resize

# Soft shadow stroked under the outline.
SHADOW_COLOR = (0, 0, 0, 102)
SHADOW_WIDTH = 8
# Outline stroked on top of the shadow.
HIGHLIGHT_COLOR = (255, 255, 255, 255)
HIGHLIGHT_WIDTH = 6


def _rgb(color):
  if isinstance(color, str):
    return ImageColor.getrgb(color)[:3]
  return tuple(int(c) for c in color[:3])


def _grid_geometry(size):
  """Returns (side, left, top) of the square grid centred in `size`."""
  width, height = size
  side = min(width, height)
  return side, (width - side) // 2, (height - side) // 2


def RenderHeatmap(alpha_grid, color=(0, 0, 0), size=(224, 224),
                  grid_size=HEATMAP_SIZE):
  r"""Renders an alpha grid as a translucent colour overlay.

  Every cell of the grid is filled with `color` at the cell's alpha. The grid
  is scaled to a square as large as the shorter side of the canvas and
  centred; the letterbox margins around it are filled with opaque `color`.

  Args:
    alpha_grid: 2D array of values in [0, 1].
    color: RGB tuple with values in [0, 255] or a PIL colour name.
    size: (width, height) of the output image in pixels.
    grid_size: Expected side of the alpha grid. Default is 14.

  Returns:
    An RGBA PIL.Image of the given size.
  """
  alpha_grid = np.clip(check_alpha_grid(alpha_grid, grid_size=grid_size),
                       0.0, 1.0)
  rgb = _rgb(color)
  width, height = size
  side, left, top = _grid_geometry(size)

  cells = np.zeros(alpha_grid.shape + (4,))
  cells[:, :, :3] = rgb
  cells[:, :, 3] = np.round(alpha_grid * 255)
  tile = resize(cells, (side, side, 4), order=0, mode='edge',
                preserve_range=True, anti_aliasing=False)

  canvas = np.zeros([height, width, 4], dtype=np.uint8)
  canvas[:, :] = rgb + (255,)
  canvas[top:top + side, left:left + side] = tile.astype(np.uint8)
  return Image.fromarray(canvas, 'RGBA')


def RenderOutline(alpha_grid, size=(224, 224), threshold=OUTLINE_THRESHOLD,
                  contours=None, grid_size=HEATMAP_SIZE):
  r"""Strokes the outlines of the important cells on a transparent image.

  Each contour is drawn twice: first a wide, translucent black stroke as a
  shadow, then a narrower opaque white stroke on top of it. Geometry matches
  RenderHeatmap() for the same size. Pass `contours` to reuse contours already
  traced on `alpha_grid`.
  """
  side, left, top = _grid_geometry(size)
  scale = side / check_alpha_grid(alpha_grid, grid_size=grid_size).shape[1]
  if contours is None:
    contours = TraceOutlines(alpha_grid, threshold=threshold,
                             grid_size=grid_size)

  image = Image.new('RGBA', tuple(size), (0, 0, 0, 0))
  draw = ImageDraw.Draw(image)
  for contour in contours:
    polygon = ContourToPolygon(contour, scale, x_offset=left, y_offset=top)
    draw.line(polygon, fill=SHADOW_COLOR, width=SHADOW_WIDTH, joint='curve')
    draw.line(polygon, fill=HIGHLIGHT_COLOR, width=HIGHLIGHT_WIDTH,
              joint='curve')
  return image


def CompositeOverlays(image, heatmap_image, outline_image=None,
                      heatmap_opacity=0.5):
  """Draws the heatmap and outline overlays over a photo.

  Args:
    image: The photo as a PIL.Image or an ndarray of shape [H, W, 3] (uint8).
    heatmap_image: RGBA image returned by RenderHeatmap().
    outline_image: Optional RGBA image returned by RenderOutline().
    heatmap_opacity: Factor in [0, 1] applied to the heatmap's alpha.

  Returns:
    An RGBA PIL.Image.

  Raises:
    ValueError: If the overlay sizes do not match the photo.
  """
  if not isinstance(image, Image.Image):
    image = Image.fromarray(np.asarray(image, dtype=np.uint8))
  image = image.convert('RGBA')
  for overlay in (heatmap_image, outline_image):
    if overlay is not None and overlay.size != image.size:
      raise ValueError('Overlay size {} does not match image size {}'.format(
          overlay.size, image.size))

  heatmap = np.array(heatmap_image.convert('RGBA'), dtype=float)
  heatmap[:, :, 3] *= np.clip(heatmap_opacity, 0.0, 1.0)
  result = Image.alpha_composite(
      image, Image.fromarray(np.round(heatmap).astype(np.uint8), 'RGBA'))
  if outline_image is not None:
    result = Image.alpha_composite(result, outline_image.convert('RGBA'))
  return result
