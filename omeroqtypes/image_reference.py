"""
Parsing and rebuilding of OMERO image references.

Stored questions point at their image through a URL.  Older releases
embedded the view state in the query string, e.g.::

    /omero-image-repository/1?id=1&t=1&z=1&zm=12.5&x=0.709&y=0.388

Current releases keep a bare ``/omero-image-repository/{id}`` URL and move
the view state into a JSON ``ImageProperties`` document.
"""

import json
import logging
import re
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit

from omeroqtypes.errors import UnparsableReference

logger = logging.getLogger(__name__)

REPOSITORY_PATH = "/omero-image-repository"

# Digits of the path segment right before "?" or the end of the string
IMAGE_ID_PATTERN = re.compile(r"/([0-9]+)(?:\?|$)")
_NUMERIC_PREFIX = re.compile(r"\s*[+-]?(?:[0-9]+(?:\.[0-9]*)?|\.[0-9]+)(?:[eE][+-]?[0-9]+)?")

RECOGNIZED_PARAMS = ("id", "x", "y", "zm", "t", "z")


def extract_image_id(url, row_id=None) -> int:
    """Return the numeric image id embedded in ``url``.

    Raises:
        UnparsableReference: when no digit-only path segment precedes
            ``?`` or the end of the string.
    """
    match = IMAGE_ID_PATTERN.search(url or "")
    if not match:
        raise UnparsableReference(url, row_id=row_id)
    return int(match.group(1))


def parse_query(url) -> Dict[str, str]:
    """Decode the query portion of ``url`` into a name -> value mapping.

    Repeated names keep the last value; blank values are kept.
    """
    query = urlsplit(url or "").query
    return dict(parse_qsl(query, keep_blank_values=True))


def repository_url(image_id, params=None) -> str:
    """Build the image-repository URL for ``image_id``.

    Without ``params`` the bare form is returned.  With ``params`` (even an
    empty mapping) the intermediate form ``…/{id}?id={id}`` is produced and
    every non-``id`` parameter is appended in its original order.
    """
    url = f"{REPOSITORY_PATH}/{image_id}"
    if params is None:
        return url
    url += f"?id={image_id}"
    rest = [(name, value) for name, value in params.items() if name != "id"]
    if rest:
        url += "&" + urlencode(rest)
    return url


def lenient_float(value, default=0.0) -> float:
    """Parse the leading numeric part of ``value``; ``default`` when there is none."""
    if value is None:
        return default
    match = _NUMERIC_PREFIX.match(str(value))
    if not match:
        return default
    return float(match.group(0))


class ImageProperties:
    """View state of an OMERO image: centre, time/z slice and zoom."""

    def __init__(self, image_id, center_x=0.0, center_y=0.0, t=1, z=1, zoom_level=0.0):
        self.id = int(image_id)
        self.center_x = float(center_x)
        self.center_y = float(center_y)
        self.t = int(t)
        self.z = int(z)
        self.zoom_level = float(zoom_level)

    def to_dict(self):
        return {
            "id": self.id,
            "center": {"x": self.center_x, "y": self.center_y},
            "t": self.t,
            "z": self.z,
            "zoom_level": self.zoom_level,
        }

    def to_json(self):
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data):
        """Build properties from their decoded JSON document.

        Raises:
            ValueError: when the document is not an object, has no ``id``
                or holds a non-numeric value.
        """
        if not isinstance(data, dict) or data.get("id") is None:
            raise ValueError(f"Image properties need an object with an id, got {data!r}")
        center = data.get("center") or {}
        if not isinstance(center, dict):
            raise ValueError(f"Image properties centre must be an object, got {center!r}")
        try:
            return cls(
                image_id=data["id"],
                center_x=center.get("x", 0.0),
                center_y=center.get("y", 0.0),
                t=data.get("t", 1),
                z=data.get("z", 1),
                zoom_level=data.get("zoom_level", 0.0),
            )
        except TypeError as e:
            raise ValueError(f"Invalid image properties {data!r}: {e}") from e

    @classmethod
    def from_json(cls, text):
        """Decode stored JSON; ``None`` for empty or missing values."""
        if not text:
            return None
        return cls.from_dict(json.loads(text))

    def __eq__(self, other):
        if not isinstance(other, ImageProperties):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __repr__(self):
        return f"ImageProperties({self.to_dict()!r})"


def properties_from_query(image_id, params) -> Optional[ImageProperties]:
    """Derive structured view properties from legacy query parameters.

    Returns ``None`` when ``params`` is empty.  ``t`` and ``z`` are always
    set to 1: legacy time/z values are not carried over.
    """
    if not params:
        return None
    query_id = params.get("id")
    if query_id is not None and str(query_id).strip() != str(image_id):
        logger.warning("Query id %r differs from path id %s; keeping the path id", query_id, image_id)
    return ImageProperties(
        image_id=image_id,
        center_x=lenient_float(params.get("x")),
        center_y=lenient_float(params.get("y")),
        t=1,
        z=1,
        zoom_level=lenient_float(params.get("zm")),
    )
