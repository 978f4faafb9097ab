#!/usr/bin/env python3
"""
Relocate the cluster-local images of an ImageStream during backup or restore.

The script reads one ImageStream (YAML or JSON), runs the matching
orchestrator and writes the resulting item back out:

- backup: copies local images into the migration registry and rewrites
  version records whose digest changed on the way
- restore: copies images staged in the migration registry into the
  destination cluster's registry; the item is written back unchanged

Usage examples:
  # Back up an image stream exported with `oc get is app -o yaml`
  python relocate_imagestream.py backup --input app-is.yaml --output app-is.backup.yaml

  # Restore into a remapped namespace
  python relocate_imagestream.py restore --input app-is.yaml --from-backup app-is.backup.yaml \\
      --namespace-mapping old-ns:new-ns

  # Use a specific config file
  CONFIG_FILE=/etc/imagecopy/config.yaml python relocate_imagestream.py backup --input app-is.yaml
"""

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

# Add parent directory to path for imports
_parent_dir = Path(__file__).parent.parent.absolute()
if str(_parent_dir) not in sys.path:
    sys.path.insert(0, str(_parent_dir))

from imagecopy.config_manager import ConfigValidationError, load_config_manager
from imagecopy.error_utils import ActionableError, create_config_error
from imagecopy.logging_utils import get_logger, level_from_name, log_exception, setup_logging
from imagecopy.orchestrators import BackupOrchestrator, RestoreOrchestrator

logger = get_logger(__name__)


def load_resource(path: str) -> Dict[str, Any]:
    """Load an ImageStream from a YAML or JSON file ("-" reads stdin)."""
    if path == "-":
        document = yaml.safe_load(sys.stdin)
    else:
        with open(path, "r") as f:
            document = yaml.safe_load(f)
    if not isinstance(document, dict):
        raise create_config_error("--input", path, "expected a single ImageStream object")
    return document


def write_resource(resource: Dict[str, Any], path: Optional[str], output_format: str) -> None:
    if output_format == "json":
        text = json.dumps(resource, indent=2) + "\n"
    else:
        text = yaml.safe_dump(resource, default_flow_style=False, sort_keys=False)

    if not path or path == "-":
        sys.stdout.write(text)
        return
    with open(path, "w") as f:
        f.write(text)
    logger.info(f"Wrote {path}")


def parse_namespace_mapping(values: Optional[List[str]]) -> Dict[str, str]:
    mapping = {}
    for value in values or []:
        old, sep, new = value.partition(":")
        if not sep or not old or not new:
            raise create_config_error("--namespace-mapping", value, "expected old:new")
        mapping[old] = new
    return mapping


def parse_arguments(argv=None):
    parser = argparse.ArgumentParser(
        description="Copy the cluster-local images of an ImageStream for backup or restore",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--config",
        help="Configuration file (defaults to CONFIG_FILE or config.yaml)",
    )
    parser.add_argument(
        "--format",
        choices=["yaml", "json"],
        default="yaml",
        help="Output format (default: yaml)",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    backup = subparsers.add_parser("backup", help="Copy local images into the migration registry")
    backup.add_argument("--input", required=True, help="ImageStream file to back up ('-' for stdin)")
    backup.add_argument("--output", help="Where to write the updated ImageStream (default: stdout)")

    restore = subparsers.add_parser("restore", help="Copy staged images into the destination registry")
    restore.add_argument("--input", required=True, help="ImageStream file being restored ('-' for stdin)")
    restore.add_argument("--output", help="Where to write the restored ImageStream (default: stdout)")
    restore.add_argument(
        "--from-backup",
        help="ImageStream exactly as stored in the backup (defaults to --input)",
    )
    restore.add_argument(
        "--namespace-mapping",
        action="append",
        metavar="OLD:NEW",
        help="Remap a source namespace to a destination namespace (repeatable)",
    )

    return parser.parse_args(argv)


def run(args) -> Dict[str, Any]:
    config_manager = load_config_manager(args.config)
    setup_logging(level_from_name(config_manager.get_log_level()))

    resource = load_resource(args.input)

    if args.command == "backup":
        return BackupOrchestrator(config_manager).execute(resource)

    from_backup = load_resource(args.from_backup) if args.from_backup else None
    result = RestoreOrchestrator(config_manager).execute(
        resource,
        resource_from_backup=from_backup,
        namespace_mapping=parse_namespace_mapping(args.namespace_mapping),
    )
    return result.item


def main(argv=None):
    setup_logging()
    args = parse_arguments(argv)

    try:
        item = run(args)
        write_resource(item, args.output, args.format)
    except KeyboardInterrupt:
        logger.warning("Interrupted by user")
        sys.exit(1)
    except ActionableError as e:
        logger.error(e.format_message())
        sys.exit(1)
    except ConfigValidationError as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        log_exception(logger, f"Error during {args.command}", exc_info=e)
        sys.exit(1)


if __name__ == "__main__":
    main()
