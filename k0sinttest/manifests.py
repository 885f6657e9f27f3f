"""Reading Kubernetes manifests from YAML or JSON documents."""

from __future__ import annotations

import os
from typing import Any, Dict, List, Union

import yaml

__all__ = ["parse_manifests", "read_manifests"]


def _is_set(obj: Dict[str, Any], key: str) -> bool:
    item = obj.get(key)
    return isinstance(item, str) and item != ""


def parse_manifests(data: Union[bytes, str]) -> List[Dict[str, Any]]:
    """The resources in a stream of YAML or JSON documents.

    A document lacking ``apiVersion`` or ``kind`` is not a resource on its
    own; its keys are carried into the following documents until both are
    present. Empty documents are skipped. Raises ``ValueError`` for a
    document that is not a mapping and ``yaml.YAMLError`` for bad syntax.
    """
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    resources: List[Dict[str, Any]] = []
    pending: Dict[str, Any] = {}
    for document in yaml.safe_load_all(data):
        if document is None:
            continue
        if not isinstance(document, dict):
            raise ValueError(
                f"expected a mapping, got {type(document).__name__}: {document!r}"
            )
        pending.update(document)
        if _is_set(pending, "apiVersion") and _is_set(pending, "kind"):
            resources.append(pending)
            pending = {}
    return resources


def read_manifests(filename: Union[str, os.PathLike]) -> List[Dict[str, Any]]:
    """The resources in the manifest file ``filename``."""
    with open(filename, "rb") as handle:
        return parse_manifests(handle.read())