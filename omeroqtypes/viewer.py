"""
Configuration handed to the browser-side image viewer.

The viewer widget opens the question's image on the OMERO server, restores
the stored view (centre, zoom, t/z) and offers "jump to" markers for the
focusable ROIs.
"""

from urllib.parse import urlencode

from omeroqtypes.image_reference import ImageProperties, extract_image_id
from omeroqtypes.questions import parse_rois


def element_ids(question_id):
    """DOM ids the question page reserves for the viewer."""
    prefix = f"q{question_id}"
    return {
        "image_viewer_container": f"{prefix}-image-viewer-container",
        "image_annotations_canvas_id": f"{prefix}-annotations-canvas",
        "focus_areas_container": f"{prefix}-focus-areas",
        "answer_input_name": f"{prefix}:answer",
    }


def build_viewer_config(question, options, image_server):
    """
    Build the viewer widget configuration for a stored question.

    Args:
        question: Question record
        options: Its options row (multichoice or interactive)
        image_server: Base URL of the OMERO web server

    Returns:
        Dict ready to be serialized as JSON for the page
    """
    image_id = extract_image_id(options.omeroimageurl, row_id=options.id)
    properties = ImageProperties.from_json(getattr(options, "omeroimageproperties", None))
    config = {
        "image_id": image_id,
        "image_properties": properties.to_dict() if properties else None,
        "image_server": image_server,
        "image_locked": bool(getattr(options, "omeroimagelocked", False)),
        "focusable_rois": parse_rois(options.focusablerois),
        "answers": [answer.answer for answer in question.answers],
    }
    config.update(element_ids(question.id))
    return config


def roi_thumbnail_url(image_server, thumbnail_path, roi_id, color="f00"):
    """URL of the rendered thumbnail of one ROI shape."""
    base = image_server.rstrip("/") + "/" + thumbnail_path.strip("/")
    return f"{base}/{roi_id}/?{urlencode({'color': color})}"
