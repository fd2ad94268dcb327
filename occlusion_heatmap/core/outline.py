# Copyright 2021 Google Inc. All Rights Reserved.
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

"""Traces closed outlines around the important regions of an alpha heatmap.

Important cells (alpha at or below the threshold) that share a side form a
region. Each region is outlined once, along its outer boundary; holes inside a
region are not outlined. A walk starts at the top edge of the region's first
cell in row-major order and keeps the outside on its left: at every cell it
probes the four sides in clockwise order, starting one step after the side it
came from. An outside side is emitted as an edge of the outline; an inside side
is crossed and the walk continues from the next cell. A walk ends when it is
about to probe the top side of its first cell again. A corner may be passed
more than once, where two outside cells touch only diagonally.
"""

import enum
import logging
from typing import FrozenSet, List, NamedTuple, Tuple

from .base import check_alpha_grid
from .base import HEATMAP_SIZE
from .base import OUTLINE_THRESHOLD
import numpy as np
from scipy import ndimage

_logger = logging.getLogger(__name__)


class Direction(enum.IntEnum):
  """A side of a cell, in clockwise order."""
  UP = 0
  RIGHT = 1
  DOWN = 2
  LEFT = 3

  def Clockwise(self):
    return Direction((self + 1) % 4)

  def CounterClockwise(self):
    return Direction((self + 3) % 4)

  def Opposite(self):
    return Direction((self + 2) % 4)


class Point(NamedTuple):
  """A cell (column, row) or a cell corner on the grid."""
  x: int
  y: int


# (dx, dy) of the neighbour on each side. Rows grow downwards.
_STEPS = {
    Direction.UP: (0, -1),
    Direction.RIGHT: (1, 0),
    Direction.DOWN: (0, 1),
    Direction.LEFT: (-1, 0),
}

# Start and end corner of the edge on each side of a cell, relative to the
# top-left corner of the cell.
_EDGE_CORNERS = {
    Direction.UP: ((0, 0), (1, 0)),
    Direction.RIGHT: ((1, 0), (1, 1)),
    Direction.DOWN: ((1, 1), (0, 1)),
    Direction.LEFT: ((0, 1), (0, 0)),
}


class Contour(NamedTuple):
  """A closed outline produced by a single walk."""
  # Corners of the outline in grid coordinates. The first and the last point
  # are the same.
  points: Tuple[Point, ...]
  # Cells the walk passed through.
  cells: FrozenSet[Point]
  # Number of sides the walk probed.
  steps: int


class OutlineState(object):
  """Mutable state of one walk."""

  def __init__(self, position, visited, first_side=Direction.UP):
    self.position = position
    # The side probed before the first rotation is one step counter-clockwise
    # from the first side to probe, and the walk pretends to have arrived
    # moving away from it. For the default first side this gives velocity
    # RIGHT and a first probe UP.
    self.check = first_side.CounterClockwise()
    self.velocity = self.check.Opposite()
    # The walk is closed when it is about to make its first probe again.
    self.start = (position, first_side)
    self.path = []
    self.path_start = None
    self.visited = visited
    self.cells = set()
    self.steps = 0


class OutlineTraceOutput(object):
  """Outputs of a single run of OutlineTracer.TraceWithDetails."""

  def __init__(self, contours, visited, important, regions):
    # Closed contours in the order their regions were found.
    self.contours = contours
    # All cells visited by any walk.
    self.visited = visited
    # Boolean grid of important cells.
    self.important = important
    # Integer grid that labels the region of every important cell, 0 elsewhere.
    self.regions = regions

  @property
  def steps(self):
    return sum(contour.steps for contour in self.contours)


class OutlineTracer(object):
  """Traces the outlines of the important regions of an alpha grid."""

  @staticmethod
  def _IsOutside(important, position, side):
    dx, dy = _STEPS[side]
    x = position.x + dx
    y = position.y + dy
    height, width = important.shape
    return x < 0 or y < 0 or x >= width or y >= height or not important[y, x]

  def _AddEdge(self, state):
    start, end = _EDGE_CORNERS[state.check]
    x, y = state.position
    if state.path_start is None:
      state.path_start = Point(x + start[0], y + start[1])
      state.path.append(state.path_start)
    state.path.append(Point(x + end[0], y + end[1]))

  def _MoveTo(self, state, position):
    state.position = position
    state.visited.add(position)
    state.cells.add(position)

  def _Walk(self, important, state, max_steps):
    self._MoveTo(state, state.position)
    while True:
      state.check = state.check.Clockwise()
      if state.steps and (state.position, state.check) == state.start:
        return
      if state.steps >= max_steps:
        break
      state.steps += 1
      if self._IsOutside(important, state.position, state.check):
        self._AddEdge(state)
      else:
        state.velocity = state.check
        dx, dy = _STEPS[state.velocity]
        self._MoveTo(state,
                     Point(state.position.x + dx, state.position.y + dy))
        state.check = state.velocity.Opposite()
    _logger.warning('Outline walk from {} stopped after {} steps; closing the '
                    'path early'.format(state.path_start, state.steps))

  def TraceWithDetails(self, alpha_grid, threshold=OUTLINE_THRESHOLD,
                       grid_size=HEATMAP_SIZE):
    """Traces outlines and returns them with the cells the walks visited.

    Args:
      alpha_grid: 2D array of alpha values as returned by ComputeHeatmap().
      threshold: Cells with an alpha at or below this value are important.
        Default is 0.5.
      grid_size: Expected side of the alpha grid. Default is 14.

    Returns:
      OutlineTraceOutput with one closed contour per region.

    Raises:
      MalformedGridError: If `alpha_grid` is not `grid_size` x `grid_size`.
    """
    alpha_grid = check_alpha_grid(alpha_grid, grid_size=grid_size)
    important = alpha_grid <= threshold
    # The default structuring element joins cells that share a side.
    regions, _ = ndimage.label(important)
    region_sizes = np.bincount(regions.ravel())

    traced = set()
    visited = set()
    contours = []
    height, width = important.shape
    for y in range(height):
      for x in range(width):
        region = regions[y, x]
        if not region or region in traced:
          continue
        traced.add(region)
        # Nothing of the region lies above its first cell, so the walk can
        # start on that cell's top edge.
        seed = Point(x, y)
        state = OutlineState(seed, visited)
        # Every side of every cell of the region is probed at most once.
        self._Walk(important, state, 4 * int(region_sizes[region]))
        if state.path[-1] != state.path_start:
          state.path.append(state.path_start)
        contours.append(Contour(points=tuple(state.path),
                                cells=frozenset(state.cells),
                                steps=state.steps))
        if _logger.isEnabledFor(logging.DEBUG):
          _logger.debug('Closed contour from {} with {} edges after {} '
                        'steps'.format(state.path_start, len(state.path) - 1,
                                       state.steps))
    return OutlineTraceOutput(contours, visited, important, regions)

  def Trace(self, alpha_grid, threshold=OUTLINE_THRESHOLD,
            grid_size=HEATMAP_SIZE):
    """Returns the closed contours around the important regions."""
    return self.TraceWithDetails(alpha_grid, threshold=threshold,
                                 grid_size=grid_size).contours


def TraceOutlines(alpha_grid, threshold=OUTLINE_THRESHOLD,
                  grid_size=HEATMAP_SIZE) -> List[Contour]:
  """Returns the closed contours around the important regions of a grid."""
  return OutlineTracer().Trace(alpha_grid, threshold=threshold,
                               grid_size=grid_size)


def ContourToPolygon(contour, scale, x_offset=0.0, y_offset=0.0):
  """Maps the corners of a contour to output pixel coordinates.

  Args:
    contour: A Contour returned by the tracer.
    scale: Side of a grid cell in output pixels.
    x_offset: Horizontal position of the grid's left edge.
    y_offset: Vertical position of the grid's top edge.

  Returns:
    A list of (x, y) float tuples.
  """
  return [(point.x * scale + x_offset, point.y * scale + y_offset)
          for point in contour.points]
