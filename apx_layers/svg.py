"""SVG generation, parsing and in-place layer edits."""

import logging
import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple
from xml.dom import minidom
from xml.parsers.expat import ExpatError
from xml.sax.saxutils import escape

import numpy as np

from .layers import hex_to_rgb, rgb_to_hex
from .types import Contour, Dialect, Layer, PathData, SerializationError, VectorDocument

logger = logging.getLogger(__name__)

SVG_NS = "http://www.w3.org/2000/svg"
AI_NS = "http://ns.adobe.com/AdobeIllustrator/10.0/"
RDF_NS = "http://www.w3.org/1999/02/22-rdf-syntax-ns#"
DC_NS = "http://purl.org/dc/elements/1.1/"

# ElementTree keeps one prefix table per process. These entries are fixed
# at import and hold no per-conversion state.
for _prefix, _uri in (("", SVG_NS), ("i", AI_NS), ("rdf", RDF_NS), ("dc", DC_NS)):
    ET.register_namespace(_prefix, _uri)

HIDDEN_VALUES = ("none", "hidden")

_NUMBER = re.compile(r"[-+]?(?:\d+\.?\d*|\.\d+)(?:[eE][-+]?\d+)?")
_STYLE_FILL = re.compile(r"fill\s*:\s*[^;]+")
_STYLE_DISPLAY = re.compile(r"display\s*:\s*([^;]+)")


def _svg(tag: str) -> str:
    return f"{{{SVG_NS}}}{tag}"


def _ai(attr: str) -> str:
    return f"{{{AI_NS}}}{attr}"


@dataclass(frozen=True)
class DialectDescriptor:
    """Group-tagging convention for one dialect.

    ``marker`` and ``marker_value`` identify a layer group when parsing.
    """

    dialect: Dialect
    marker: str
    marker_value: Optional[str] = None
    name_attr: Optional[str] = None
    color_attr: Optional[str] = None
    nested_name_attr: Optional[str] = None
    inline_style: bool = False
    root_group: bool = False
    metadata: bool = False

    def is_layer_group(self, elem: ET.Element) -> bool:
        value = elem.get(self.marker)
        if value is None or elem.get("id") is None:
            return False
        return self.marker_value is None or value == self.marker_value


PLAIN = DialectDescriptor(dialect=Dialect.PLAIN, marker="data-name", name_attr="data-name")

ILLUSTRATOR = DialectDescriptor(
    dialect=Dialect.ILLUSTRATOR,
    marker=_ai("layer"),
    marker_value="yes",
    nested_name_attr=_ai("name"),
    metadata=True,
)

PHOTOPEA = DialectDescriptor(
    dialect=Dialect.PHOTOPEA,
    marker="data-photopea-layer",
    marker_value="true",
    name_attr="data-layer-name",
    color_attr="data-layer-color",
    inline_style=True,
    root_group=True,
)

DIALECTS = {d.dialect: d for d in (PLAIN, ILLUSTRATOR, PHOTOPEA)}

# Detection order: most specific marker first
DETECTION_ORDER = (PHOTOPEA, ILLUSTRATOR, PLAIN)


def format_number(x: float, precision: int = 2) -> str:
    """Format number with given precision, dropping trailing zeros."""
    formatted = f"{x:.{precision}f}"
    if "." in formatted:
        formatted = formatted.rstrip("0").rstrip(".")
    if formatted == "-0":
        formatted = "0"
    return formatted


def contour_to_path_data(contour: Contour, precision: int = 2) -> PathData:
    """Convert a contour to an absolute ``M x,y L x,y ... Z`` command string."""
    coords = [
        f"{format_number(x, precision)},{format_number(y, precision)}" for x, y in contour
    ]
    if not coords:
        return ""
    parts = [f"M {coords[0]}"] + [f"L {c}" for c in coords[1:]] + ["Z"]
    return " ".join(parts)


def path_data_to_contour(path_data: PathData) -> Contour:
    """Recover the points of an ``M/L/Z`` command string."""
    values = [float(v) for v in _NUMBER.findall(path_data)]
    if len(values) % 2:
        values = values[:-1]
    return np.array(values, dtype=np.float64).reshape(-1, 2)


def _to_text(root: ET.Element) -> str:
    """Pretty-print an element tree, dropping blank lines."""
    try:
        svg_string = ET.tostring(root, encoding="unicode")
        dom = minidom.parseString(svg_string)
    except (ExpatError, TypeError, ValueError) as e:
        raise SerializationError(f"Failed to render SVG: {e}") from e
    pretty_xml = dom.toprettyxml(indent="  ")
    lines = [line for line in pretty_xml.split("\n") if line.strip()]
    return "\n".join(lines)


def _remove_whitespace(element: ET.Element) -> None:
    """Strip indentation text so re-rendering does not accumulate it."""
    if element.text is not None and not element.text.strip():
        element.text = None
    if element.tail is not None and not element.tail.strip():
        element.tail = None
    for child in element:
        _remove_whitespace(child)


def _parse_root(text: str) -> ET.Element:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise SerializationError(f"Not a well-formed SVG document: {e}") from e
    if root.tag != _svg("svg"):
        raise SerializationError(f"Unexpected root element {root.tag}")
    return root


def _root_element(width: int, height: int) -> ET.Element:
    root = ET.Element(_svg("svg"))
    root.set("version", "1.1")
    root.set("width", str(width))
    root.set("height", str(height))
    root.set("viewBox", f"0 0 {width} {height}")
    return root


def _add_metadata(root: ET.Element, title: str) -> None:
    metadata = ET.SubElement(root, _svg("metadata"))
    rdf = ET.SubElement(metadata, f"{{{RDF_NS}}}RDF")
    description = ET.SubElement(rdf, f"{{{RDF_NS}}}Description")
    ET.SubElement(description, f"{{{DC_NS}}}format").text = "image/svg+xml"
    ET.SubElement(description, f"{{{DC_NS}}}title").text = title
    ET.SubElement(description, f"{{{DC_NS}}}creator").text = "apx-layers"
    ET.SubElement(description, f"{{{DC_NS}}}subject").text = "Layered vector image"


def _add_shapes(
    parent: ET.Element,
    layer: Layer,
    width: int,
    height: int,
    stroke_width: float,
    precision: int,
) -> None:
    """Append the layer's raster image or paths to ``parent``."""
    if layer.raster:
        image = ET.SubElement(parent, _svg("image"))
        image.set("x", "0")
        image.set("y", "0")
        image.set("width", str(width))
        image.set("height", str(height))
        image.set("href", layer.raster)

    for contour in layer.paths:
        path_data = contour_to_path_data(contour, precision)
        if not path_data:
            continue
        path = ET.SubElement(parent, _svg("path"))
        path.set("d", path_data)
        path.set("fill", layer.color_hex)
        if stroke_width > 0:
            path.set("stroke", "#000000")
            path.set("stroke-width", format_number(stroke_width, precision))


def _add_layer_group(
    container: ET.Element,
    layer: Layer,
    descriptor: DialectDescriptor,
    width: int,
    height: int,
    stroke_width: float,
    precision: int,
) -> None:
    group = ET.SubElement(container, _svg("g"))
    group.set("id", layer.id)

    if descriptor.dialect == Dialect.ILLUSTRATOR:
        group.set(_ai("layer"), "yes")
    elif descriptor.dialect == Dialect.PHOTOPEA:
        group.set("data-photopea-layer", "true")
    if descriptor.name_attr:
        group.set(descriptor.name_attr, layer.name)
    if descriptor.color_attr:
        group.set(descriptor.color_attr, layer.color_hex)
    if descriptor.inline_style:
        group.set("style", f"fill:{layer.color_hex};")

    group.set("fill", layer.color_hex)
    group.set("display", "inline" if layer.visible else "none")

    target = group
    if descriptor.nested_name_attr:
        target = ET.SubElement(group, _svg("g"))
        target.set(descriptor.nested_name_attr, layer.name)

    _add_shapes(target, layer, width, height, stroke_width, precision)


def serialize(
    doc: VectorDocument,
    dialect: Optional[Dialect] = None,
    flat: bool = False,
    stroke_width: float = 0.0,
    precision: int = 2,
) -> str:
    """Render a document as SVG text.

    Args:
        doc: Document to render
        dialect: Group-tagging convention (defaults to ``doc.dialect``)
        flat: Emit paths directly under the root without layer groups;
            hidden layers are omitted
        stroke_width: Outline width for emitted paths (0 = no stroke)
        precision: Decimal places for coordinates

    Returns:
        SVG document text

    Raises:
        SerializationError: If the document has no layers or cannot be rendered
    """
    if not doc.layers:
        raise SerializationError("Cannot serialize a document without layers")

    descriptor = DIALECTS[dialect or doc.dialect]
    root = _root_element(doc.width, doc.height)

    if flat:
        for layer in doc.layers:
            if layer.visible:
                _add_shapes(root, layer, doc.width, doc.height, stroke_width, precision)
        return _to_text(root)

    if descriptor.metadata:
        _add_metadata(root, "Layered vector image")

    container = root
    if descriptor.root_group:
        container = ET.SubElement(root, _svg("g"))
        container.set("id", "Layers")
        container.set("data-photopea-root", "true")

    for layer in doc.layers:
        _add_layer_group(container, layer, descriptor, doc.width, doc.height, stroke_width, precision)

    logger.debug(f"Serialized {len(doc.layers)} layers as {descriptor.dialect.value}")
    return _to_text(root)


def detect_dialect(root: ET.Element) -> Tuple[Optional[DialectDescriptor], List[ET.Element]]:
    """Find the dialect in use and its layer groups.

    Returns:
        (descriptor, groups); descriptor is None for documents without layers
    """
    groups = list(root.iter(_svg("g")))
    for descriptor in DETECTION_ORDER:
        matches = [g for g in groups if descriptor.is_layer_group(g)]
        if matches:
            return descriptor, matches
    return None, []


def _is_visible(group: ET.Element) -> bool:
    if group.get("display", "inline").strip().lower() in HIDDEN_VALUES:
        return False
    if group.get("visibility", "visible").strip().lower() in HIDDEN_VALUES:
        return False
    match = _STYLE_DISPLAY.search(group.get("style", ""))
    return not (match and match.group(1).strip().lower() in HIDDEN_VALUES)


def _layer_color(group: ET.Element, descriptor: DialectDescriptor) -> str:
    candidates = [group.get("fill")]
    if descriptor.color_attr:
        candidates.append(group.get(descriptor.color_attr))
    style_fill = _STYLE_FILL.search(group.get("style", ""))
    if style_fill:
        candidates.append(style_fill.group(0).split(":", 1)[1])
    candidates.extend(path.get("fill") for path in group.iter(_svg("path")))

    for candidate in candidates:
        if not candidate:
            continue
        try:
            return rgb_to_hex(hex_to_rgb(candidate))
        except ValueError:
            continue
    return "#000000"


def _layer_name(group: ET.Element, descriptor: DialectDescriptor) -> str:
    if descriptor.name_attr and group.get(descriptor.name_attr):
        return group.get(descriptor.name_attr)
    if descriptor.nested_name_attr:
        for inner in group.iter(_svg("g")):
            if inner.get(descriptor.nested_name_attr):
                return inner.get(descriptor.nested_name_attr)
    return group.get("id")


def _group_to_layer(group: ET.Element, descriptor: DialectDescriptor) -> Layer:
    paths = [path_data_to_contour(p.get("d", "")) for p in group.iter(_svg("path"))]
    raster = None
    for image in group.iter(_svg("image")):
        raster = image.get("href") or image.get("{http://www.w3.org/1999/xlink}href")
        break
    return Layer(
        id=group.get("id"),
        name=_layer_name(group, descriptor),
        color_hex=_layer_color(group, descriptor),
        visible=_is_visible(group),
        paths=paths,
        raster=raster,
    )


def _dimension(root: ET.Element, attr: str, index: int) -> int:
    value = root.get(attr)
    if value is None:
        box = root.get("viewBox", "").replace(",", " ").split()
        value = box[index] if len(box) == 4 else "0"
    match = _NUMBER.search(value)
    return int(float(match.group(0))) if match else 0


def parse(text: str) -> List[Layer]:
    """Recover the layers of a serialized document in any dialect.

    Raises:
        SerializationError: If the text is not a well-formed SVG document
    """
    root = _parse_root(text)
    descriptor, groups = detect_dialect(root)
    if descriptor is None:
        return []
    return [_group_to_layer(group, descriptor) for group in groups]


def parse_document(text: str) -> VectorDocument:
    """Recover canvas size, dialect and layers of a serialized document."""
    root = _parse_root(text)
    descriptor, groups = detect_dialect(root)
    layers = [_group_to_layer(group, descriptor) for group in groups]
    return VectorDocument(
        width=_dimension(root, "width", 2),
        height=_dimension(root, "height", 3),
        layers=layers,
        dialect=descriptor.dialect if descriptor else Dialect.PLAIN,
    )


def _edit_groups(text: str, edit: Callable[[ET.Element], None], layer_id: Optional[str] = None) -> str:
    """Apply ``edit`` to matching layer groups and re-render the text.

    A ``layer_id`` that matches no group leaves the text unchanged.
    """
    root = _parse_root(text)
    _, groups = detect_dialect(root)
    if layer_id is not None:
        groups = [g for g in groups if g.get("id") == layer_id]
    if not groups:
        logger.debug(f"No layer group matches {layer_id!r}; document unchanged")
        return text

    for group in groups:
        edit(group)
    _remove_whitespace(root)
    return _to_text(root)


def _apply_visibility(group: ET.Element, visible: bool) -> None:
    group.set("display", "inline" if visible else "none")
    if "visibility" in group.attrib:
        del group.attrib["visibility"]
    style = group.get("style")
    if style and _STYLE_DISPLAY.search(style):
        group.set("style", _STYLE_DISPLAY.sub(f"display:{'inline' if visible else 'none'}", style))


def set_visibility(text: str, layer_id: str, visible: bool) -> str:
    """Show or hide one layer group in serialized text."""
    return _edit_groups(text, lambda g: _apply_visibility(g, visible), layer_id)


def set_all_visibility(text: str, visible: bool) -> str:
    """Show or hide every layer group in serialized text."""
    return _edit_groups(text, lambda g: _apply_visibility(g, visible))


def set_color(text: str, layer_id: str, color_hex: str) -> str:
    """Rewrite the fill of one layer group and of every shape inside it.

    Raises:
        ValueError: If ``color_hex`` is not a hex color
    """
    color = rgb_to_hex(hex_to_rgb(color_hex))

    def recolor(group: ET.Element) -> None:
        group.set("fill", color)
        if group.get("data-layer-color") is not None:
            group.set("data-layer-color", color)
        style = group.get("style")
        if style and _STYLE_FILL.search(style):
            group.set("style", _STYLE_FILL.sub(f"fill:{color}", style))
        for elem in group.iter():
            if elem is not group and elem.tag == _svg("path"):
                elem.set("fill", color)

    return _edit_groups(text, recolor, layer_id)


def fallback_svg(width: int, height: int, message: str = "Vectorization failed") -> str:
    """Minimal valid document: background rectangle plus a centred label."""
    width = max(1, int(width))
    height = max(1, int(height))
    font_size = max(8, min(24, width // 20))
    return f'''<?xml version="1.0" encoding="UTF-8"?>
<svg xmlns="{SVG_NS}" version="1.1" width="{width}" height="{height}" viewBox="0 0 {width} {height}">
  <rect x="0" y="0" width="{width}" height="{height}" fill="#f0f0f0"/>
  <text x="{width / 2:g}" y="{height / 2:g}" font-family="sans-serif" font-size="{font_size}" text-anchor="middle" dominant-baseline="middle" fill="#666666">{escape(message)}</text>
</svg>'''
