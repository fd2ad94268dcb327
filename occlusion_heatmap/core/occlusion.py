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

"""Utilities to sample classifier confidences on occluded images."""

from concurrent import futures
import logging

from .base import AnalysisCancelledError
from .base import CoreOcclusion
from .base import GRID_PADDING
from .base import GRID_SIZE
from .base import PATCH_SIZE
from .base import PATCH_STRIDE
from .base import SENTINEL
from .base import WORKING_SIZE
import numpy as np
from skimage.transform import resize

_logger = logging.getLogger(__name__)

# Pure magenta, a colour that rarely occurs in natural images.
MASK_COLOR = (1.0, 0.0, 1.0)
# Seconds between two checks of the cancel event while waiting for results.
_POLL_INTERVAL = 0.05


def _default_mask_value(x_value):
  if np.issubdtype(x_value.dtype, np.integer):
    max_value = np.iinfo(x_value.dtype).max
  else:
    max_value = 1.0
  if x_value.ndim > 2:
    color = np.zeros(x_value.shape[2])
    channels = min(len(MASK_COLOR), x_value.shape[2])
    color[:channels] = MASK_COLOR[:channels]
    # Extra channels (e.g. alpha) are kept opaque.
    color[channels:] = 1.0
    return color * max_value
  return max_value


def crop_to_center(x_value):
  """Crops an image to the largest centred square."""
  height, width = x_value.shape[:2]
  side = min(height, width)
  top = (height - side) // 2
  left = (width - side) // 2
  return x_value[top:top + side, left:left + side]


def prepare_image(x_value, size=WORKING_SIZE):
  """Crops an image to a centred square and resizes it to `size` x `size`.

  The value range and dtype of the input are preserved.

  Args:
    x_value: Input image as an ndarray of shape [H, W, C] or [H, W].
    size: Side of the returned image. Defaults to 224.
  """
  x_value = np.asarray(x_value)
  cropped = crop_to_center(x_value)
  if cropped.shape[:2] == (size, size):
    return np.array(cropped)
  resized = resize(cropped,
                   (size, size) + cropped.shape[2:],
                   order=1,
                   mode='edge',
                   preserve_range=True,
                   anti_aliasing=True)
  if np.issubdtype(x_value.dtype, np.integer):
    resized = np.round(resized)
  return resized.astype(x_value.dtype)


def mask_image(x_value,
               row,
               col,
               size=PATCH_SIZE,
               stride=PATCH_STRIDE,
               value=None):
  """Returns a copy of `x_value` with one square patch filled with `value`.

  Args:
    x_value: Input image as an ndarray of shape [H, W, C] or [H, W].
    row: Grid row of the patch. Its top edge is at `row * stride`.
    col: Grid column of the patch. Its left edge is at `col * stride`.
    size: Height and width of the patch. Default is 64.
    stride: Distance between neighbouring patches. Default is 16.
    value: Value to fill the patch with. Defaults to magenta in the value
      range of the image (the maximum value for grayscale images).
  """
  if value is None:
    value = _default_mask_value(x_value)
  x_occluded = np.array(x_value)
  top = row * stride
  left = col * stride
  x_occluded[top:top + size, left:left + size] = value
  return x_occluded


class Occlusion(CoreOcclusion):
  """A CoreOcclusion class that samples class confidences on occluded images.

  The working image is covered by a grid of overlapping square patches. Each
  patch is occluded in turn and the occluded image is classified again; the
  confidence of the analysed class is stored in a padded confidence grid.
  All classifier calls run concurrently and are joined before the grid is
  returned.
  """

  def _SampleCell(self, x_value, call_model_function, call_model_args,
                  class_label, row, col, size, stride, value, threshold):
    x_occluded = mask_image(x_value, row, col, size=size, stride=stride,
                            value=value)
    return self.GetClassScore(x_occluded,
                              call_model_function,
                              class_label,
                              call_model_args=call_model_args,
                              threshold=threshold)

  def GetMask(self,
              x_value,
              call_model_function,
              call_model_args=None,
              class_label=None,
              grid_size=GRID_SIZE,
              padding=GRID_PADDING,
              size=PATCH_SIZE,
              stride=PATCH_STRIDE,
              value=None,
              threshold=0.0,
              max_workers=None,
              cancel_event=None):
    """Returns a confidence grid for `class_label`.

    Args:
      x_value: Working image as an ndarray of shape [H, W, C] or [H, W]. See
        prepare_image() to crop and resize an arbitrary photo.
      call_model_function: A function that interfaces with a classifier to
        return the scores of specific classes for a single image.
        Expected function signature:
        - call_model_function(x_value,
                              call_model_args=None,
                              class_labels=None,
                              threshold=0.0):
          x_value - A single occluded image (not batched).
          call_model_args - Other arguments used to call and run the model.
          class_labels - For this method (Occlusion), a list that holds
            `class_label` only.
          threshold - Minimum score of the classes that should be returned.
          The function returns an iterable of (label, score) pairs. Calls
          that raise or do not return `class_label` leave a SENTINEL in the
          grid.
      call_model_args: The arguments that will be passed to the call model
        function, for every call of the model.
      class_label: Label of the analysed class. Matched case-insensitively.
      grid_size: Number of patches along each axis. Default is 11.
      padding: Width of the SENTINEL ring around the sampled cells. Default
        is 3.
      size: Height and width of the occlusion patch. Default is 64.
      stride: Distance between neighbouring patches. Default is 16.
      value: Value to replace values inside the patch with. Defaults to
        magenta.
      threshold: Threshold passed to `call_model_function`. Default is 0.
      max_workers: Maximum number of concurrent classifier calls. Defaults to
        one worker per patch, so all the calls are issued at once.
      cancel_event: Optional threading.Event. When it is set while the
        classifier calls are running, the method stops waiting for them,
        cancels the calls that have not started and raises
        AnalysisCancelledError.

    Returns:
      A float ndarray of shape [grid_size + 2 * padding] * 2. Cell (r, c) of
      the patch grid is stored at (r + padding, c + padding).

    Raises:
      ValueError: If `class_label` is not given.
      AnalysisCancelledError: If `cancel_event` is set before all calls
        complete.
    """
    if class_label is None:
      raise ValueError('class_label is required')

    x_value = np.asarray(x_value)
    confidence_grid = np.full([grid_size + 2 * padding] * 2, SENTINEL)
    if max_workers is None:
      max_workers = grid_size * grid_size

    _logger.info('Sampling {} occluded images for class {!r}...'.format(
        grid_size * grid_size, class_label))
    executor = futures.ThreadPoolExecutor(max_workers=max_workers)
    cancelled = False
    try:
      pending = {}
      for row in range(grid_size):
        for col in range(grid_size):
          future = executor.submit(self._SampleCell, x_value,
                                   call_model_function, call_model_args,
                                   class_label, row, col, size, stride, value,
                                   threshold)
          pending[future] = (row, col)

      gaps = 0
      while pending:
        if cancel_event is not None and cancel_event.is_set():
          cancelled = True
          raise AnalysisCancelledError(
              'Analysis of class {!r} was cancelled with {} classifier calls '
              'outstanding'.format(class_label, len(pending)))
        done, _ = futures.wait(pending,
                               timeout=_POLL_INTERVAL,
                               return_when=futures.FIRST_COMPLETED)
        for future in done:
          row, col = pending.pop(future)
          try:
            score = future.result()
          except Exception as e:  # pylint: disable=broad-except
            _logger.warning('Classifier call for cell ({}, {}) failed: {}'.format(
                row, col, e))
            score = None
          if score is None:
            gaps += 1
            continue
          confidence_grid[row + padding, col + padding] = score
    finally:
      # Calls still running when the analysis is cancelled are abandoned; their
      # results are never read.
      executor.shutdown(wait=not cancelled, cancel_futures=cancelled)

    if gaps:
      _logger.info('{} of {} cells have no confidence data'.format(
          gaps, grid_size * grid_size))
    if _logger.isEnabledFor(logging.DEBUG):
      _logger.debug('Confidence grid:\n{}'.format(confidence_grid))
    return confidence_grid
