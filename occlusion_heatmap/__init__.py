"""Occlusion sensitivity heatmaps and outlines for image classifiers."""
from .core import *
