# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "crossbuild",
# ]
# ///

import argparse
import json
import pathlib
from typing import Optional

from crossbuild.config import load_config
from crossbuild.matrix import binary_output_name, cells, image_output_name

CONFIG = "crossbuild.yml"
CI_EXTRA_SKIP_LABELS = ["documentation"]


def parse_labels(labels: Optional[str]) -> dict[str, set[str]]:
    """Parse labels into a dict of category filters."""
    if not labels:
        return {}

    result: dict[str, set[str]] = {
        "target": set(),
        "allocator": set(),
        "kind": set(),
        "directives": set(),
    }

    for label in labels.split(","):
        label = label.strip()

        # Handle special labels
        if label in CI_EXTRA_SKIP_LABELS:
            result["directives"].add("skip")
            continue

        if not label or ":" not in label:
            continue

        category, value = label.split(":", 1)

        if category == "ci":
            category = "directives"

        if category in result:
            result[category].add(value)

    return result


def should_include_entry(entry: dict[str, str], filters: dict[str, set[str]]) -> bool:
    """Check if an entry satisfies the label filters."""
    if filters.get("directives") and "skip" in filters["directives"]:
        return False

    for category in ("target", "allocator", "kind"):
        if filters.get(category) and entry[category] not in filters[category]:
            return False

    return True


def generate_matrix_entries(
    config, label_filters: Optional[dict[str, set[str]]] = None
) -> list[dict[str, str]]:
    label_filters = label_filters or {}
    matrix_entries = []

    for variant in cells(config.allocators, config.targets()):
        base_entry = {
            "target": variant.target.triple if variant.target else "native",
            "allocator": variant.allocator.label,
        }

        if "dry-run" in label_filters.get("directives", set()):
            base_entry["dry-run"] = "true"

        for kind, output in (
            ("binary", binary_output_name(variant)),
            ("image", image_output_name(variant)),
        ):
            entry = base_entry.copy()
            entry.update({"kind": kind, "output": output})
            matrix_entries.append(entry)

    return [
        entry
        for entry in matrix_entries
        if should_include_entry(entry, label_filters)
    ]


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Generate a JSON matrix for building outputs in CI"
    )
    parser.add_argument(
        "--config",
        default=CONFIG,
        help="Path to the build configuration file",
    )
    parser.add_argument(
        "--labels",
        help="Comma-separated list of labels to filter by (e.g., 'target:aarch64-unknown-linux-musl,kind:image'), all must match.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    labels = parse_labels(args.labels)

    config = load_config(pathlib.Path(args.config))

    matrix = {"include": generate_matrix_entries(config, labels)}

    print(json.dumps(matrix))


if __name__ == "__main__":
    main()
