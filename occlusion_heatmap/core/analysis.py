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

"""Occlusion sensitivity heatmaps with crisp outlines.

Example usage:

  heatmap = OcclusionHeatmap()
  cache = HeatmapCache()
  output = heatmap.GetMaskWithDetails(photo,
                                      call_model_function,
                                      class_label='golden retriever',
                                      cache=cache)
  overlay = CompositeOverlays(photo, output.heatmap_image,
                              output.outline_image)
"""

import logging

from .base import ClassifierUnavailableError
from .base import ClassNotFoundError
from .base import CoreOcclusion
from .base import GRID_PADDING
from .base import GRID_SIZE
from .base import KERNEL
from .base import OUTLINE_THRESHOLD
from .base import PATCH_SIZE
from .base import PATCH_STRIDE
from .base import WORKING_SIZE
from .heatmap import ComputeHeatmap
from .occlusion import Occlusion
from .occlusion import prepare_image
from .outline import TraceOutlines
from .visualization import RenderHeatmap
from .visualization import RenderOutline
import numpy as np

_logger = logging.getLogger(__name__)


class OcclusionHeatmapParameters(object):
  """Dictionary of parameters to specify how to compute and render heatmaps."""

  def __init__(self,
               grid_size=GRID_SIZE,
               padding=GRID_PADDING,
               patch_size=PATCH_SIZE,
               stride=PATCH_STRIDE,
               working_size=WORKING_SIZE,
               mask_value=None,
               classifier_threshold=0.0,
               outline_threshold=OUTLINE_THRESHOLD,
               max_workers=None,
               render=True,
               output_size=None,
               heatmap_color=(0, 0, 0)):
    # Number of occluded patches along each axis of the working image. Together
    # with `padding` it determines the confidence grid size, which must be
    # (grid_size + 2 * padding) for the 4x4 kernel to produce a 14x14 heatmap
    # with the defaults.
    self.grid_size = grid_size
    # Width of the SENTINEL ring around the sampled cells.
    self.padding = padding
    # Side of an occlusion patch in pixels of the working image.
    self.patch_size = patch_size
    # Distance between neighbouring patches in pixels of the working image.
    self.stride = stride
    # The input photo is cropped to a centred square and resized to this size
    # before it is occluded. Set to None if the input is already prepared.
    self.working_size = working_size
    # Value that fills the occluded patch. None selects magenta.
    self.mask_value = mask_value
    # Passed as `threshold` to every call of the call model function.
    self.classifier_threshold = classifier_threshold
    # Heatmap cells with an alpha at or below this value are outlined.
    self.outline_threshold = outline_threshold
    # Maximum number of concurrent classifier calls. None issues all the calls
    # of the grid at once.
    self.max_workers = max_workers
    # If set to True the output holds the rendered heatmap and outline images.
    self.render = render
    # (width, height) of the rendered images. None uses the size of the input
    # photo, so the overlays line up with it.
    self.output_size = output_size
    # Colour of the heatmap overlay.
    self.heatmap_color = heatmap_color


class OcclusionHeatmapOutput(object):
  """Dictionary of outputs from a single run of GetMaskWithDetails."""

  def __init__(self, alpha_grid):
    # The heatmap as a float array with values in [0, 1]. Low values mark the
    # cells whose occlusion lowered the class score the most.
    self.alpha_grid = alpha_grid
    # The padded grid of class scores on the occluded images, with SENTINEL
    # where no score was sampled.
    self.confidence_grid = None
    # Score of the class on the unoccluded image.
    self.original_confidence = None
    # Closed contours around the important cells (see outline.Contour).
    self.contours = None
    # RGBA PIL images. Set only when OcclusionHeatmapParameters.render is True.
    self.heatmap_image = None
    self.outline_image = None


class HeatmapCache(object):
  """Outputs of previous analyses of one photo, keyed by class label.

  The cache belongs to the caller, which should create a new one (or call
  Clear()) whenever the photo changes. Labels are compared
  case-insensitively.
  """

  def __init__(self):
    self._outputs = {}

  def Get(self, class_label):
    return self._outputs.get(class_label.casefold())

  def Put(self, class_label, output):
    self._outputs[class_label.casefold()] = output

  def Clear(self):
    self._outputs.clear()

  def __contains__(self, class_label):
    return class_label.casefold() in self._outputs

  def __len__(self):
    return len(self._outputs)


class OcclusionHeatmap(CoreOcclusion):
  """A CoreOcclusion class that explains a class score with occlusions."""

  def __init__(self):
    super(OcclusionHeatmap, self).__init__()
    self._occlusion = Occlusion()

  def GetOriginalConfidence(self, x_value, call_model_function, class_label,
                            call_model_args=None, threshold=0.0):
    """Returns the score of `class_label` on the unoccluded image.

    Raises:
      ClassifierUnavailableError: If `call_model_function` raised.
      ClassNotFoundError: If the classifier did not score `class_label`.
    """
    try:
      score = self.GetClassScore(x_value,
                                 call_model_function,
                                 class_label,
                                 call_model_args=call_model_args,
                                 threshold=threshold)
    except Exception as e:  # pylint: disable=broad-except
      raise ClassifierUnavailableError(
          'Could not classify image: {}'.format(e)) from e
    if score is None:
      raise ClassNotFoundError(
          'The classifier did not return class {!r} for the image'.format(
              class_label))
    return score

  def GetMask(self,
              x_value,
              call_model_function,
              call_model_args=None,
              class_label=None,
              original_confidence=None,
              extra_parameters=None,
              cancel_event=None):
    """Returns the alpha heatmap of `class_label` for `x_value`.

    See GetMaskWithDetails() for a description of the arguments.
    """
    if extra_parameters is None:
      extra_parameters = OcclusionHeatmapParameters(render=False)
    results = self.GetMaskWithDetails(x_value,
                                      call_model_function,
                                      call_model_args=call_model_args,
                                      class_label=class_label,
                                      original_confidence=original_confidence,
                                      extra_parameters=extra_parameters,
                                      cancel_event=cancel_event)
    return results.alpha_grid

  def GetMaskWithDetails(self,
                         x_value,
                         call_model_function,
                         call_model_args=None,
                         class_label=None,
                         original_confidence=None,
                         extra_parameters=None,
                         cancel_event=None,
                         cache=None):
    """Computes the occlusion heatmap of a class and returns detailed output.

    Args:
        x_value: The photo as an ndarray of shape [H, W, C] or [H, W].
        call_model_function: A function that interfaces with a classifier to
          return the scores of specific classes for a single image.
          Expected function signature:
          - call_model_function(x_value,
                                call_model_args=None,
                                class_labels=None,
                                threshold=0.0):
            x_value - A single image (not batched) of the working size.
            call_model_args - Other arguments used to call and run the model.
            class_labels - A list that holds `class_label` only.
            threshold - See OcclusionHeatmapParameters.classifier_threshold.
            The function returns an iterable of (label, score) pairs.
        call_model_args: The arguments that will be passed to the call model
          function, for every call of the model.
        class_label: Label of the class to explain. Matched case-insensitively.
        original_confidence: Score of the class on the unoccluded image. If
          None, the unoccluded working image is classified first.
        extra_parameters: An OcclusionHeatmapParameters object. If it is None,
          an object with default parameters is created.
        cancel_event: Optional threading.Event that cancels the analysis while
          the occluded images are being classified.
        cache: Optional HeatmapCache. A cached output for `class_label` is
          returned as is; a new output is stored in it.

    Raises:
        ValueError: If `class_label` is not given.
        ClassifierUnavailableError: If the unoccluded image could not be
          classified. No occluded image is classified in that case.
        ClassNotFoundError: If the classifier did not score `class_label` on
          the unoccluded image.
        AnalysisCancelledError: If `cancel_event` was set.

    Returns:
        OcclusionHeatmapOutput: an object that holds the heatmap, the contours
        and the intermediate confidence grid.
    """
    if class_label is None:
      raise ValueError('class_label is required')
    if cache is not None:
      cached = cache.Get(class_label)
      if cached is not None:
        _logger.info('Using cached heatmap for class {!r}'.format(class_label))
        return cached
    if extra_parameters is None:
      extra_parameters = OcclusionHeatmapParameters()

    x_value = np.asarray(x_value)
    if extra_parameters.working_size is not None:
      x_working = prepare_image(x_value, extra_parameters.working_size)
    else:
      x_working = x_value

    if original_confidence is None:
      original_confidence = self.GetOriginalConfidence(
          x_working,
          call_model_function,
          class_label,
          call_model_args=call_model_args,
          threshold=extra_parameters.classifier_threshold)
    _logger.info('Original confidence of class {!r}: {:.3g}'.format(
        class_label, original_confidence))

    confidence_grid = self._occlusion.GetMask(
        x_working,
        call_model_function,
        call_model_args=call_model_args,
        class_label=class_label,
        grid_size=extra_parameters.grid_size,
        padding=extra_parameters.padding,
        size=extra_parameters.patch_size,
        stride=extra_parameters.stride,
        value=extra_parameters.mask_value,
        threshold=extra_parameters.classifier_threshold,
        max_workers=extra_parameters.max_workers,
        cancel_event=cancel_event)

    _logger.info('Done with sampling. Computing heatmap...')
    confidence_grid_size = (extra_parameters.grid_size +
                            2 * extra_parameters.padding)
    heatmap_size = confidence_grid_size - KERNEL.shape[0] + 1
    alpha_grid = ComputeHeatmap(confidence_grid, original_confidence,
                                kernel=KERNEL, grid_size=confidence_grid_size)
    contours = TraceOutlines(alpha_grid,
                             threshold=extra_parameters.outline_threshold,
                             grid_size=heatmap_size)

    results = OcclusionHeatmapOutput(alpha_grid)
    results.confidence_grid = confidence_grid
    results.original_confidence = original_confidence
    results.contours = contours
    if extra_parameters.render:
      output_size = extra_parameters.output_size
      if output_size is None:
        output_size = (x_value.shape[1], x_value.shape[0])
      results.heatmap_image = RenderHeatmap(
          alpha_grid,
          color=extra_parameters.heatmap_color,
          size=output_size,
          grid_size=heatmap_size)
      results.outline_image = RenderOutline(
          alpha_grid,
          size=output_size,
          threshold=extra_parameters.outline_threshold,
          contours=contours,
          grid_size=heatmap_size)
    if cache is not None:
      cache.Put(class_label, results)
    return results
