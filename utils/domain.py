"""Derive a service's public site URL from its status API URL."""
from __future__ import annotations

from urllib.parse import urlsplit


def domain_from_res_api_url(res_api_url: str) -> str:
    """
    https://resource-status.example.co.id/api → https://example.co.id/

    The first host label is dropped when the host has more than two labels.
    Returns "" for anything that is not an absolute URL.
    """
    try:
        parts = urlsplit(res_api_url or "")
        host = parts.hostname
    except ValueError:
        return ""
    if not parts.scheme or not host:
        return ""

    labels = host.split(".")
    if len(labels) > 2:
        labels = labels[1:]
    return f"{parts.scheme}://{'.'.join(labels)}/"
