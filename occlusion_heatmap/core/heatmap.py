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

"""Turns a sparse confidence grid into a dense alpha heatmap."""
import logging

from .base import check_confidence_grid
from .base import CONFIDENCE_GRID_SIZE
from .base import KERNEL
from .base import SENTINEL
import numpy as np
from scipy import signal

_logger = logging.getLogger(__name__)


def ComputeWeightedMeans(confidence_grid, kernel=KERNEL, fallback=0.0,
                         grid_size=CONFIDENCE_GRID_SIZE):
  r"""Returns the kernel-weighted local mean of a confidence grid.

  Output cell (r, c) is the weighted mean of the window that starts at grid
  cell (r, c) and has the shape of the kernel, so the output is smaller than
  the grid by `kernel.shape - 1` along each axis. SENTINEL cells (and NaNs)
  are left out of both the weighted sum and the total weight.

  Args:
    confidence_grid: Square 2D array of scores, SENTINEL marking missing data.
    kernel: Non-negative 2D weights. Defaults to the 4x4 smoothing kernel.
    fallback: Mean of a window that holds no sampled cell. Default is 0. A
      fallback below every sampled score becomes the smallest mean of the grid,
      so NormalizeMeans() maps such a window to alpha 0 and missing data is
      drawn like the largest confidence drop and outlined as important.
    grid_size: Expected side of the confidence grid. Default is 17.

  Raises:
    MalformedGridError: If the grid is not `grid_size` x `grid_size` or is
      smaller than the kernel.
  """
  confidence_grid = check_confidence_grid(confidence_grid,
                                          grid_size=grid_size,
                                          kernel=kernel)
  sampled = np.logical_and(confidence_grid != SENTINEL,
                           np.isfinite(confidence_grid))
  values = np.where(sampled, confidence_grid, 0.0)

  weighted_sums = signal.correlate2d(values, kernel, mode='valid')
  weights = signal.correlate2d(sampled.astype(float), kernel, mode='valid')

  means = np.full(weights.shape, float(fallback))
  np.divide(weighted_sums, weights, out=means, where=weights > 0)
  if _logger.isEnabledFor(logging.DEBUG):
    _logger.debug('{} of {} windows hold no sampled cell'.format(
        np.sum(weights <= 0), weights.size))
  return means


def NormalizeMeans(means, original_confidence):
  """Maps local mean confidences to alpha values in [0, 1].

  The alpha of a cell is one minus its confidence drop relative to the largest
  drop on the grid. When no cell drops below the original confidence the
  ratio is defined as 0, so every alpha is 1.
  """
  means = np.asarray(means, dtype=float)
  drops = np.maximum(original_confidence - means, 0.0)
  max_drop = max(original_confidence - np.min(means), 0.0)
  if max_drop <= 0:
    _logger.info('Original confidence {} is not above the smallest mean {}; '
                 'the heatmap is flat'.format(original_confidence,
                                              np.min(means)))
    ratios = np.zeros_like(means)
  else:
    ratios = drops / max_drop
  return np.clip(1.0 - ratios, 0.0, 1.0)


def ComputeHeatmap(confidence_grid, original_confidence, kernel=KERNEL,
                   grid_size=CONFIDENCE_GRID_SIZE):
  """Returns the alpha heatmap of a confidence grid.

  Args:
    confidence_grid: Square 2D array as returned by Occlusion.GetMask().
    original_confidence: Score of the analysed class on the unoccluded image.
    kernel: Smoothing weights. Defaults to the 4x4 kernel.
    grid_size: Expected side of the confidence grid. Default is 17.

  Returns:
    A float ndarray with values in [0, 1]; 14x14 for the default 17x17 grid.
    Low values mark the cells whose occlusion lowered the score the most.

  Raises:
    MalformedGridError: If the grid does not have the expected shape.
  """
  means = ComputeWeightedMeans(confidence_grid, kernel=kernel,
                               grid_size=grid_size)
  return NormalizeMeans(means, original_confidence)
