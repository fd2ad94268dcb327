"""Imports all classes from files so they can be called directly from occlusion_heatmap.core."""
from .analysis import *
from .base import *
from .heatmap import *
from .occlusion import *
from .outline import *
from .visualization import *
