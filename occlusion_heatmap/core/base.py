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

"""Shared constants, errors and helpers for occlusion heatmaps."""
import logging

import numpy as np

_logger = logging.getLogger(__name__)

# Value of a confidence grid cell that holds no classifier score, either
# because it belongs to the padding ring or because the classifier call for
# that cell failed.
SENTINEL = -1.0
# Number of occluded patches along each axis of the working image.
GRID_SIZE = 11
# Width of the sentinel ring around the sampled cells.
GRID_PADDING = 3
# Side of the square working image the classifier sees, in pixels.
WORKING_SIZE = 224
# Side of an occlusion patch, in pixels of the working image.
PATCH_SIZE = 64
# Distance between the top-left corners of neighbouring patches.
PATCH_STRIDE = 16
# Alpha value at or below which a heatmap cell is considered important.
OUTLINE_THRESHOLD = 0.5
# Weights used to smooth the confidence grid into the heatmap.
KERNEL = np.array([[0.1, 0.5, 0.5, 0.1],
                   [0.5, 1.0, 1.0, 0.5],
                   [0.5, 1.0, 1.0, 0.5],
                   [0.1, 0.5, 0.5, 0.1]])
# Side of the padded confidence grid.
CONFIDENCE_GRID_SIZE = GRID_SIZE + 2 * GRID_PADDING
# Side of the heatmap produced from a confidence grid.
HEATMAP_SIZE = CONFIDENCE_GRID_SIZE - KERNEL.shape[0] + 1

CONFIDENCE_GRID = 'CONFIDENCE_GRID'
ALPHA_GRID = 'ALPHA_GRID'

SHAPE_ERROR_MESSAGE = {
    CONFIDENCE_GRID: (
        'Expected CONFIDENCE_GRID to have shape {} and to be at least as '
        'large as the kernel {} - actual {}'
    ),
    ALPHA_GRID: (
        'Expected ALPHA_GRID to have shape {} - actual {}'
    ),
}


class MalformedGridError(ValueError):
  """Raised when a grid does not have the dimensions the caller promised."""
  pass


class ClassifierUnavailableError(Exception):
  """Raised when the unoccluded image could not be classified.

  Without the original confidence no analysis can start, so the error is
  surfaced to the caller before any occluded image is sampled.
  """
  pass


class ClassNotFoundError(ValueError):
  """Raised when the classifier did not score the requested class label."""
  pass


class AnalysisCancelledError(Exception):
  """Raised when an analysis is cancelled while waiting for classifier calls."""
  pass


def check_confidence_grid(confidence_grid, grid_size=CONFIDENCE_GRID_SIZE,
                          kernel=KERNEL):
  """Converts a confidence grid into an np.ndarray and confirms its shape.

  Args:
    confidence_grid: The grid to check.
    grid_size: Expected side of the grid, padding included. Default is 17.
    kernel: The smoothing kernel the grid will be used with.

  Raises:
    MalformedGridError: If the grid is not `grid_size` x `grid_size` or is
      smaller than the kernel.
  """
  confidence_grid = np.asarray(confidence_grid, dtype=float)
  expected = (grid_size, grid_size)
  if (confidence_grid.shape != expected or grid_size < kernel.shape[0] or
      grid_size < kernel.shape[1]):
    raise MalformedGridError(SHAPE_ERROR_MESSAGE[CONFIDENCE_GRID].format(
        expected, kernel.shape, confidence_grid.shape))
  return confidence_grid


def check_alpha_grid(alpha_grid, grid_size=HEATMAP_SIZE):
  """Converts an alpha grid into an np.ndarray and confirms its shape.

  Raises:
    MalformedGridError: If the grid is not `grid_size` x `grid_size`.
  """
  alpha_grid = np.asarray(alpha_grid, dtype=float)
  expected = (grid_size, grid_size)
  if alpha_grid.shape != expected or grid_size < 1:
    raise MalformedGridError(SHAPE_ERROR_MESSAGE[ALPHA_GRID].format(
        expected, alpha_grid.shape))
  return alpha_grid


def match_class_score(class_scores, class_label):
  """Returns the score of `class_label` in the classifier output, or None.

  Labels are compared case-insensitively, so 'Dog' matches 'DOG'.

  Args:
    class_scores: Iterable of (label, score) pairs, or None.
    class_label: The label to look up.
  """
  if not class_scores:
    return None
  wanted = class_label.casefold()
  for label, score in class_scores:
    if label is not None and label.casefold() == wanted and score is not None:
      return float(score)
  return None


class CoreOcclusion(object):
  r"""Base class for occlusion methods. Alone, this class doesn't do anything."""

  def GetMask(self, x_value, call_model_function, call_model_args=None,
              **kwargs):
    """Returns a mask for `x_value`.

    Args:
      x_value: Input image as an ndarray of shape [H, W, C] or [H, W].
      call_model_function: A function that interfaces with a classifier to
        return the scores of specific classes for a single image.
        Expected function signature:
        - call_model_function(x_value,
                              call_model_args=None,
                              class_labels=None,
                              threshold=0.0):
          x_value - A single input image (not batched).
          call_model_args - Other arguments used to call and run the model.
          class_labels - List of class labels the classifier should score.
          threshold - Minimum score of the classes that should be returned.
          The function returns an iterable of (label, score) pairs. It may
          return nothing and it may raise.
      call_model_args: The arguments that will be passed to the call model
        function, for every call of the model.
    """
    raise NotImplementedError('A derived class should implemented GetMask()')

  def GetClassScore(self, x_value, call_model_function, class_label,
                    call_model_args=None, threshold=0.0):
    """Classifies `x_value` and returns the score of `class_label`.

    Returns None when the classifier did not return the class. Exceptions
    raised by `call_model_function` are propagated.
    """
    class_scores = call_model_function(
        x_value,
        call_model_args=call_model_args,
        class_labels=[class_label],
        threshold=threshold)
    score = match_class_score(class_scores, class_label)
    if score is None and _logger.isEnabledFor(logging.DEBUG):
      _logger.debug('Class {!r} missing from classifier output {!r}'.format(
          class_label, class_scores))
    return score
