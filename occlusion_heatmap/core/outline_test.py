# Copyright 2021 Google Inc. All Rights Reserved.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for the outline tracer."""
import unittest

from .base import MalformedGridError
from . import outline
from .outline import Direction
from .outline import Point
import numpy as np
from scipy import ndimage

SIDE = 14


def _alpha_grid(important_cells, side=SIDE):
  """Returns an alpha grid with the given (row, col) cells set to 0."""
  alpha_grid = np.ones([side, side])
  for row, col in important_cells:
    alpha_grid[row, col] = 0.0
  return alpha_grid


def _outer_boundary_cells(regions, region):
  """Returns the cells of `region` with a side on its outer boundary.

  The outside of a region is the part of its complement, cells touching at a
  corner included, that is connected to the area beyond the grid.
  """
  height, width = regions.shape
  complement = np.ones([height + 2, width + 2], dtype=bool)
  complement[1:-1, 1:-1] = regions != region
  components, _ = ndimage.label(complement, structure=np.ones([3, 3]))
  exterior = components == components[0, 0]
  cells = set()
  for y, x in zip(*np.nonzero(regions == region)):
    for dx, dy in ((0, -1), (1, 0), (0, 1), (-1, 0)):
      if exterior[y + 1 + dy, x + 1 + dx]:
        cells.add(Point(int(x), int(y)))
  return cells


def _edges(contour):
  return [frozenset(edge)
          for edge in zip(contour.points[:-1], contour.points[1:])]


class DirectionTest(unittest.TestCase):

  def testRotation(self):
    self.assertEqual(Direction.UP.Clockwise(), Direction.RIGHT)
    self.assertEqual(Direction.LEFT.Clockwise(), Direction.UP)
    self.assertEqual(Direction.UP.CounterClockwise(), Direction.LEFT)
    self.assertEqual(Direction.RIGHT.Opposite(), Direction.LEFT)
    self.assertEqual(Direction.DOWN.Opposite(), Direction.UP)


class OutlineTracerTest(unittest.TestCase):
  """To run: "python -m occlusion_heatmap.core.outline_test" from top-level directory."""

  def setUp(self):
    super().setUp()
    self.tracer = outline.OutlineTracer()

  def _assertClosedAndConnected(self, contour):
    self.assertEqual(contour.points[0], contour.points[-1])
    for start, end in zip(contour.points[:-1], contour.points[1:]):
      self.assertEqual(abs(start.x - end.x) + abs(start.y - end.y), 1,
                       msg='{} and {} are not neighbouring corners'.format(
                           start, end))

  def testSingleCell(self):
    contours = self.tracer.Trace(_alpha_grid([(5, 5)]))

    self.assertEqual(len(contours), 1)
    self.assertEqual(contours[0].points,
                     (Point(5, 5), Point(6, 5), Point(6, 6), Point(5, 6),
                      Point(5, 5)))
    self.assertEqual(contours[0].cells, frozenset([Point(5, 5)]))
    self.assertEqual(contours[0].steps, 4)

  def testSingleCellInCorner(self):
    contours = self.tracer.Trace(_alpha_grid([(13, 13)]))

    self.assertEqual(len(contours), 1)
    self.assertEqual(len(contours[0].points), 5)
    self.assertEqual(contours[0].points[0], Point(13, 13))
    self._assertClosedAndConnected(contours[0])

  def testNoImportantCells(self):
    self.assertEqual(self.tracer.Trace(np.ones([SIDE, SIDE])), [])

  def testWholeGrid(self):
    """An all-important grid is outlined by the border of the grid."""
    output = self.tracer.TraceWithDetails(np.zeros([SIDE, SIDE]))

    self.assertEqual(len(output.contours), 1)
    contour = output.contours[0]
    self._assertClosedAndConnected(contour)
    self.assertEqual(len(contour.points), 4 * SIDE + 1)
    self.assertEqual(contour.points[0], Point(0, 0))
    for point in contour.points:
      self.assertTrue(point.x in (0, SIDE) or point.y in (0, SIDE))
    corners = set(contour.points)
    for corner in (Point(0, 0), Point(SIDE, 0), Point(SIDE, SIDE),
                   Point(0, SIDE)):
      self.assertIn(corner, corners)
    # 56 edges and one move into each of the 52 border cells.
    self.assertEqual(contour.steps, 108)
    self.assertEqual(len(contour.cells), 4 * (SIDE - 1))

  def testBlock(self):
    cells = [(row, col) for row in range(5, 8) for col in range(5, 8)]

    contours = self.tracer.Trace(_alpha_grid(cells))

    self.assertEqual(len(contours), 1)
    contour = contours[0]
    self._assertClosedAndConnected(contour)
    self.assertEqual(len(contour.points), 13)
    self.assertEqual(min(p.x for p in contour.points), 5)
    self.assertEqual(max(p.x for p in contour.points), 8)
    self.assertEqual(min(p.y for p in contour.points), 5)
    self.assertEqual(max(p.y for p in contour.points), 8)
    # The centre cell is surrounded and never entered.
    self.assertNotIn(Point(6, 6), contour.cells)
    self.assertEqual(len(contour.cells), 8)
    self.assertLessEqual(contour.steps, 4 * len(cells))

  def testThresholdIsInclusive(self):
    alpha_grid = np.ones([SIDE, SIDE])
    alpha_grid[2, 3] = 0.5
    alpha_grid[8, 8] = 0.51

    contours = self.tracer.Trace(alpha_grid)

    self.assertEqual(len(contours), 1)
    self.assertEqual(contours[0].cells, frozenset([Point(3, 2)]))

  def testCustomThreshold(self):
    alpha_grid = np.full([SIDE, SIDE], 0.6)
    alpha_grid[0, 0] = 0.9

    contours = self.tracer.Trace(alpha_grid, threshold=0.7)

    self.assertEqual(len(contours), 1)
    self.assertNotIn(Point(0, 0), contours[0].cells)

  def testSeparateRegions(self):
    """Every boundary cell belongs to exactly one contour."""
    cells = [(1, 1), (1, 2), (2, 1),  # L-shape
             (8, 8), (8, 9), (9, 8), (9, 9), (10, 8),
             (2, 3)]  # touches the L-shape diagonally only
    alpha_grid = _alpha_grid(cells)

    output = self.tracer.TraceWithDetails(alpha_grid)

    self.assertEqual(len(output.contours), 3)
    seen = set()
    for contour in output.contours:
      self._assertClosedAndConnected(contour)
      self.assertFalse(seen & contour.cells)
      seen |= contour.cells
    self.assertEqual(seen, {Point(col, row) for row, col in cells})

  def testDiagonalCells(self):
    contours = self.tracer.Trace(_alpha_grid([(0, 0), (1, 1)]))

    self.assertEqual(len(contours), 2)
    for contour in contours:
      self.assertEqual(len(contour.points), 5)

  def testRingWithHole(self):
    """Only the outer boundary of a ring is outlined."""
    cells = [(row, col) for row in range(5) for col in range(5)
             if (row, col) != (2, 2)]

    contours = self.tracer.Trace(_alpha_grid(cells))

    self.assertEqual(len(contours), 1)
    self._assertClosedAndConnected(contours[0])
    self.assertEqual(len(contours[0].points), 21)
    for point in contours[0].points:
      self.assertTrue(point.x in (0, 5) or point.y in (0, 5))

  def testHoleTouchingItsOwnCorner(self):
    """A walk passing a corner twice does not close early."""
    # 0 marks an important cell. The cells at (x=4, y=2) and (x=3, y=3) form
    # a hole whose two cells touch at corner (4, 3) only.
    alpha_grid = np.array([[0, 1, 1, 0, 0, 1],
                           [1, 1, 1, 0, 0, 0],
                           [1, 1, 0, 0, 1, 0],
                           [0, 1, 0, 1, 0, 0],
                           [0, 1, 0, 0, 0, 0],
                           [1, 0, 0, 0, 0, 0]], dtype=float)

    output = self.tracer.TraceWithDetails(alpha_grid, grid_size=6)

    self.assertEqual(len(output.contours), 3)
    all_edges = []
    for contour in output.contours:
      self._assertClosedAndConnected(contour)
      all_edges.extend(_edges(contour))
    self.assertEqual(len(all_edges), len(set(all_edges)))
    hole_edges = {frozenset([Point(4, 2), Point(5, 2)]),
                  frozenset([Point(3, 3), Point(3, 4)])}
    self.assertFalse(hole_edges & set(all_edges))
    first, region, left = output.contours
    self.assertEqual(first.points,
                     (Point(0, 0), Point(1, 0), Point(1, 1), Point(0, 1),
                      Point(0, 0)))
    self.assertEqual(region.points[0], Point(3, 0))
    self.assertEqual(left.points[0], Point(0, 3))
    self.assertEqual(len(left.points), 7)

  def testRandomGrids(self):
    """Walks close and visit every outer boundary cell exactly once."""
    rng = np.random.RandomState(0)
    for _ in range(200):
      alpha_grid = rng.uniform(size=[SIDE, SIDE])

      output = self.tracer.TraceWithDetails(alpha_grid)

      all_edges = []
      outlined = set()
      visits = {}
      for contour in output.contours:
        self._assertClosedAndConnected(contour)
        # A contour starts at the top-left corner of its first cell.
        seed = contour.points[0]
        region = output.regions[seed.y, seed.x]
        self.assertNotIn(region, outlined)
        outlined.add(region)
        self.assertLessEqual(contour.steps,
                             4 * int(np.sum(output.regions == region)))
        all_edges.extend(_edges(contour))
        for cell in contour.cells:
          self.assertEqual(output.regions[cell.y, cell.x], region)
          visits[cell] = visits.get(cell, 0) + 1
        self.assertTrue(
            _outer_boundary_cells(output.regions, region) <= contour.cells)
      self.assertEqual(outlined, set(np.unique(output.regions)) - {0})
      self.assertEqual(len(all_edges), len(set(all_edges)))
      self.assertTrue(all(count == 1 for count in visits.values()))

  def testMalformedGrid(self):
    for shape in ([SIDE], [SIDE, SIDE - 1], [3, 7], [SIDE + 2, SIDE + 2]):
      with self.assertRaises(MalformedGridError):
        self.tracer.Trace(np.zeros(shape))

  def testContourToPolygon(self):
    contour = outline.TraceOutlines(_alpha_grid([(0, 1)]))[0]

    polygon = outline.ContourToPolygon(contour, scale=10.0, y_offset=5.0)

    self.assertEqual(polygon, [(10.0, 5.0), (20.0, 5.0), (20.0, 15.0),
                               (10.0, 15.0), (10.0, 5.0)])


if __name__ == '__main__':
  unittest.main()
