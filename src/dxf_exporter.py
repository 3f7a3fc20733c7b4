"""
DXF export of the baseplate footprint.

Uses ezdxf to produce a DXF with proper layers:
  - CUT (red, ACI 1): plate outline and screw cutouts
  - ENGRAVE (blue, ACI 5): washer pads, seam patches, labels

Units: millimeters. Format: R2010.
"""
import io
import logging
import os
from dataclasses import dataclass
from typing import Optional

import ezdxf
from ezdxf.enums import TextEntityAlignment
from shapely.geometry import MultiPolygon, Polygon

from baseplate import BaseplateLayout
from geometry_primitives import polygon_from_points

logger = logging.getLogger(__name__)


@dataclass
class DXFExportConfig:
    """Configuration for DXF export."""
    cut_layer: str = "CUT"
    engrave_layer: str = "ENGRAVE"
    cut_color: int = 1       # ACI red
    engrave_color: int = 5   # ACI blue
    add_part_labels: bool = True
    label_height_mm: float = 5.0


def baseplate_document(
    layout: BaseplateLayout,
    part_name: str = "foothook base",
    config: Optional[DXFExportConfig] = None,
):
    """Build an ezdxf document for the baseplate layout."""
    if config is None:
        config = DXFExportConfig()

    doc = ezdxf.new("R2010")
    doc.units = ezdxf.units.MM
    msp = doc.modelspace()

    _setup_layers(doc, config)
    _add_layout_geometry(msp, layout, config)

    if config.add_part_labels:
        _add_label(msp, layout, part_name, config)
    return doc


def baseplate_to_dxf_bytes(
    layout: BaseplateLayout,
    part_name: str = "foothook base",
    config: Optional[DXFExportConfig] = None,
) -> bytes:
    """DXF file contents for the baseplate, as bytes."""
    doc = baseplate_document(layout, part_name, config)
    stream = io.StringIO()
    doc.write(stream)
    return stream.getvalue().encode("utf-8")


def baseplate_to_dxf(
    layout: BaseplateLayout,
    filepath: str,
    part_name: str = "foothook base",
    config: Optional[DXFExportConfig] = None,
) -> str:
    """Export the baseplate to a DXF file.

    Returns:
        Path to created DXF file.
    """
    doc = baseplate_document(layout, part_name, config)
    os.makedirs(os.path.dirname(filepath) or ".", exist_ok=True)
    doc.saveas(filepath)
    logger.info("Exported DXF: %s", filepath)
    return filepath


# ─── Internal helpers ────────────────────────────────────────────────────────

def _setup_layers(doc, config: DXFExportConfig) -> None:
    """Create CUT and ENGRAVE layers."""
    doc.layers.add(config.cut_layer, color=config.cut_color)
    doc.layers.add(config.engrave_layer, color=config.engrave_color)


def _add_layout_geometry(msp, layout: BaseplateLayout, config: DXFExportConfig) -> None:
    _add_polygon_to_dxf(msp, layout.outline_polygon(), config.cut_layer)

    for cutout in layout.cutout_polygons():
        _add_polygon_to_dxf(msp, cutout, config.cut_layer)

    # Pads and patches sit under the plate; mark them for reference only.
    for washer in layout.washers:
        _add_polygon_to_dxf(msp, polygon_from_points(washer), config.engrave_layer)
    for patch in layout.seam_patches:
        _add_polygon_to_dxf(msp, polygon_from_points(patch), config.engrave_layer)


def _add_polygon_to_dxf(msp, polygon: Polygon, layer: str) -> None:
    """Add a Shapely polygon as a closed LWPolyline."""
    if polygon.is_empty:
        return

    if isinstance(polygon, MultiPolygon):
        for geom in polygon.geoms:
            _add_polygon_to_dxf(msp, geom, layer)
        return

    coords = list(polygon.exterior.coords)
    if len(coords) >= 3:
        msp.add_lwpolyline(coords, close=True, dxfattribs={"layer": layer})

    for interior in polygon.interiors:
        coords = list(interior.coords)
        if len(coords) >= 3:
            msp.add_lwpolyline(coords, close=True, dxfattribs={"layer": layer})


def _add_label(msp, layout: BaseplateLayout, name: str, config: DXFExportConfig) -> None:
    """Name and thickness at the outline's representative point."""
    anchor = layout.outline_polygon().representative_point()
    msp.add_text(
        name,
        height=config.label_height_mm,
        dxfattribs={"layer": config.engrave_layer},
    ).set_placement((anchor.x, anchor.y), align=TextEntityAlignment.MIDDLE_CENTER)

    msp.add_text(
        f"t={layout.thickness:.1f}mm",
        height=config.label_height_mm * 0.7,
        dxfattribs={"layer": config.engrave_layer},
    ).set_placement(
        (anchor.x, anchor.y - config.label_height_mm * 2),
        align=TextEntityAlignment.MIDDLE_CENTER,
    )
