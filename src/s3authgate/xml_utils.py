"""S3-style XML error bodies for rejected requests."""

from xml.sax.saxutils import escape

from fastapi.responses import Response

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>'


def render_error(
    code: str,
    message: str,
    resource: str = "",
    request_id: str = "",
    extra_fields: dict[str, str] | None = None,
) -> str:
    """Render an un-namespaced ``<Error>`` document for a verification failure.

    Empty ``resource`` and ``request_id`` are left out. ``extra_fields``
    (e.g. ``AWSAccessKeyId`` for an unknown key) follow in insertion order.
    """
    elements = [("Code", code), ("Message", message)]
    if resource:
        elements.append(("Resource", resource))
    if request_id:
        elements.append(("RequestId", request_id))
    elements.extend((extra_fields or {}).items())

    lines = [XML_DECLARATION, "<Error>"]
    lines.extend(f"<{tag}>{escape(str(value))}</{tag}>" for tag, value in elements)
    lines.append("</Error>")
    return "\n".join(lines)


def xml_response(body: str, status: int = 200) -> Response:
    return Response(content=body, status_code=status, media_type="application/xml")
