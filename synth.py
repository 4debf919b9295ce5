"""Writes the assembled graph as the JSON document the deploy pipeline archives."""

import json
import os
from typing import Any, Dict, Optional

import pulumi

from graph import Backend, StackGraph

DOCUMENT_NAME = "stack.json"


def document_path(output_dir: str, stack_name: str) -> str:
    return os.path.join(output_dir, "stacks", stack_name, DOCUMENT_NAME)


def synthesize(graph: StackGraph, backend: Optional[Backend], output_dir: str, stack_name: str) -> str:
    path = document_path(output_dir, stack_name)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    document = graph.to_document(backend)
    with open(path, "w") as file:
        json.dump(document, file, indent=2, sort_keys=True)
        file.write("\n")
    pulumi.log.info(f"Synthesized {len(graph)} descriptors to {path}")
    return path


def load_document(path: str) -> Dict[str, Any]:
    with open(path, "r") as file:
        return json.load(file)
