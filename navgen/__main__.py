"""
Command-line entry point for navmesh generation.

Usage:
    python -m navgen scene.obj -o scene.navmesh --config agent.json
"""

import argparse
import logging
import sys
from pathlib import Path


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Build a navigation mesh from OBJ geometry"
    )
    parser.add_argument(
        "input",
        type=str,
        help="Path to OBJ file",
    )
    parser.add_argument(
        "--output", "-o",
        type=str,
        default=None,
        help="Output .navmesh file (default: input path with .navmesh extension)",
    )
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="JSON config with build options or an 'agent' section",
    )
    parser.add_argument(
        "--workers", "-j",
        type=int,
        default=None,
        help="Threads for detail mesh sampling",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log debug messages",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(message)s",
    )

    from navgen import log
    from navgen.config import NavMeshConfig, load_config
    from navgen.errors import NavMeshError
    from navgen.loaders import load_obj
    from navgen.persistence import NAVMESH_FILE_EXTENSION, NavMeshPersistence
    from navgen.pipeline import NavMeshBuilder

    input_path = Path(args.input)
    if not input_path.exists():
        print(f"Error: Input file does not exist: {input_path}")
        return 1

    output_path = Path(args.output) if args.output else input_path.with_suffix(NAVMESH_FILE_EXTENSION)

    try:
        config = load_config(args.config) if args.config else NavMeshConfig()
        if args.workers is not None:
            config.max_workers = args.workers

        mesh = load_obj(input_path)
        result = NavMeshBuilder(config).build(mesh)
    except NavMeshError as e:
        log.error(e, f"Failed to build navmesh from {input_path}")
        return 1

    NavMeshPersistence.save(result.poly_mesh, result.detail_mesh, output_path, name=input_path.stem)
    print(
        f"Saved {result.poly_mesh.poly_count} polygons "
        f"({len(result.detail_mesh.tris)} detail triangles) to {output_path}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
