"""
CLI commands for inspecting JSON schema registries.
"""

import argparse
import importlib
import logging
import sys

from .errors import CachedJsonError
from .models import ExposureLevel, UNSPECIFIED_VERSION
from .registry import SchemaRegistry, class_key


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def load_registry(target: str) -> SchemaRegistry:
    """Import a registry given as ``package.module:attribute``."""
    module_name, _, attribute = target.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Expected 'module:attribute', got {target!r}")
    registry = getattr(importlib.import_module(module_name), attribute)
    if not isinstance(registry, SchemaRegistry):
        raise TypeError(f"{target} is not a SchemaRegistry")
    return registry


def _find_class(registry: SchemaRegistry, name: str):
    for cls in registry.classes():
        if name in (cls.__name__, cls.__qualname__, class_key(cls)):
            return cls
    return None


def cmd_classes(args):
    """List registered classes."""
    setup_logging(args.verbose)

    registry = load_registry(args.registry)
    print(f"Registered classes ({len(registry)}):")
    for cls in sorted(registry.classes(), key=class_key):
        schema = registry.lookup(cls)
        versions = ", ".join(sorted(schema.known_versions)) or "-"
        print(f"  {class_key(cls)}  fields={len(schema.fields)}  versions={versions}")
    return 0


def cmd_fields(args):
    """Show the fields visible for a version / exposure request."""
    setup_logging(args.verbose)

    registry = load_registry(args.registry)
    cls = _find_class(registry, args.class_name)
    if cls is None:
        print(f"✗ Class {args.class_name} is not registered")
        return 1

    exposure = ExposureLevel.parse(args.exposure)
    schema = registry.lookup(cls)
    print(f"{class_key(cls)} @ version={args.version} exposure={exposure.name.lower()}:")
    for spec in schema.fields:
        visible = spec.is_visible(args.version, exposure)
        marker = "✓" if visible else "○"
        versions = "all" if spec.versions is None else ",".join(sorted(spec.versions))
        print(
            f"  {marker} {spec.name} ({spec.kind.value}, min={spec.min_exposure.name.lower()},"
            f" versions={versions})"
        )
    return 0


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Inspect cached-json schema registries",
        prog="cached-json"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging"
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands"
    )

    classes_parser = subparsers.add_parser(
        "classes",
        help="List registered classes"
    )
    classes_parser.add_argument("registry", help="Registry as module:attribute")
    classes_parser.set_defaults(func=cmd_classes)

    fields_parser = subparsers.add_parser(
        "fields",
        help="Show which fields a request would render"
    )
    fields_parser.add_argument("registry", help="Registry as module:attribute")
    fields_parser.add_argument("class_name", help="Class name or module.QualName")
    fields_parser.add_argument(
        "--version",
        default=UNSPECIFIED_VERSION,
        help=f"Requested version (default: {UNSPECIFIED_VERSION})"
    )
    fields_parser.add_argument(
        "--exposure",
        default="short",
        choices=[level.name.lower() for level in ExposureLevel],
        help="Requested exposure level (default: short)"
    )
    fields_parser.set_defaults(func=cmd_fields)

    args = parser.parse_args(argv)

    if not hasattr(args, 'func'):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except (CachedJsonError, ImportError, AttributeError, TypeError, ValueError) as e:
        print(f"✗ {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
