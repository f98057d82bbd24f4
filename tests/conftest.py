"""Shared fixtures: an in-memory map view and simple raster layers."""

import pytest
from PIL import Image

from topoclip.view import LayerSurface, MapView


class FillLayer:
    """Layer that renders a solid colour and remembers every state it saw."""

    def __init__(self, color=(0, 128, 0, 255), opacity=1.0, transform=None, scale=1.0):
        self.color = color
        self.opacity = opacity
        self.transform = transform
        self.scale = scale
        self.calls = []

    def render(self, state):
        self.calls.append(state)
        width = max(1, int(state.size[0] * self.scale))
        height = max(1, int(state.size[1] * self.scale))
        image = Image.new("RGBA", (width, height), self.color)
        return LayerSurface(image, self.opacity, self.transform)


@pytest.fixture
def fill_layer():
    return FillLayer


@pytest.fixture
def view():
    return MapView(center=(500.0, 500.0), resolution=1.0, size=(800, 600))
