#!/usr/bin/env python

# Copyright 2024 daohu527 <daohu527@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.


import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional

from whl_deps.project import ProjectDiscoveryError, ProjectWorkspace
from whl_deps.project_lock import ProjectLock, ProjectLockTimeoutError, ProjectLockError
from whl_deps.pyproject import InvalidPackageName, PackageName
from whl_deps.remove import (
    DependencyNotFoundError,
    DependencyRemover,
    EnvironmentSetupError,
    ExitStatus,
    LockError,
    ManifestParseError,
    PersistError,
    ProjectNotFoundError,
    RemoveError,
    SyncError,
)
from whl_deps.settings import SettingsError, load_settings

# ==============================================================================
# Command Handlers
# ==============================================================================


def handle_remove(args: argparse.Namespace) -> ExitStatus:
    """Handle 'remove' command"""
    workspace = ProjectWorkspace.discover(args.project_dir)
    # Settings live next to pyproject.toml, wherever discovery started.
    settings = load_settings(args.settings, project_dir=workspace.root)
    remover = DependencyRemover(settings)
    with ProjectLock(workspace.root, timeout=settings.lock_timeout):
        return remover.remove(
            args.packages,
            python=args.python,
            preview=args.preview,
            dev=args.dev,
            optional=args.optional,
            dry_run=args.dry_run,
            workspace=workspace,
        )

# ==============================================================================
# Main Application
# ==============================================================================


def _package_name(value: str) -> PackageName:
    try:
        return PackageName(value)
    except InvalidPackageName as e:
        raise argparse.ArgumentTypeError(str(e))


def create_parser() -> argparse.ArgumentParser:
    """Create and configure the command-line argument parser"""
    parser = argparse.ArgumentParser(
        prog="whl-deps",
        description="whl-deps: Edit project dependencies and keep the environment in sync",
        formatter_class=argparse.RawTextHelpFormatter
    )

    # Global arguments
    parser.add_argument(
        "--project-dir", type=Path, default=Path("."),
        help="Directory to start project discovery from, default is the current directory"
    )
    parser.add_argument(
        "--settings", type=Path, default=None,
        help="Settings file (default: whl-deps.yaml next to pyproject.toml, if present)"
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Enable verbose debug output"
    )

    subparsers = parser.add_subparsers(
        dest='command', required=True, help='Available commands'
    )

    # 1. remove
    parser_remove = subparsers.add_parser(
        "remove",
        aliases=["rm"],
        help="Remove dependencies from the project.",
        description="Removes the named packages from pyproject.toml, leaving the rest of the file untouched,\n"
                    "then re-locks the project and syncs its environment. If any package is not a\n"
                    "dependency, nothing is changed."
    )
    parser_remove.add_argument(
        "packages",
        nargs='+',
        type=_package_name,
        help="One or more package names to remove."
    )
    group = parser_remove.add_mutually_exclusive_group()
    group.add_argument(
        "--dev", action="store_true", default=False,
        help="Remove from the development dependencies (tool.uv.dev-dependencies)."
    )
    group.add_argument(
        "--optional", metavar="GROUP", default=None,
        help="Remove from the given optional dependency group."
    )
    parser_remove.add_argument(
        "-p", "--python", default=None,
        help="Python interpreter to use if the project environment has to be created."
    )
    parser_remove.add_argument(
        "--preview", action="store_true", default=False,
        help="Enable preview features (silences the experimental warning)."
    )
    parser_remove.add_argument(
        "--dry-run", action="store_true", default=False,
        help="Print the pyproject.toml changes only, do not write, lock or sync."
    )

    return parser


def main(argv: Optional[List[str]] = None):
    """Main execution function"""
    parser = create_parser()
    args = parser.parse_args(argv)

    # Configure logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level, format='%(levelname)s: %(message)s', stream=sys.stdout)

    try:
        # Command handler mapping
        command_handlers: Dict[str, Callable[[argparse.Namespace], ExitStatus]] = {
            "remove": handle_remove,
            "rm": handle_remove,
        }

        handler = command_handlers.get(args.command)
        if handler is None:
            # This should not happen since 'command' is required
            parser.print_help()
            sys.exit(1)
        status = handler(args)

    # Precise, user-facing exception handling
    except DependencyNotFoundError as e:
        logging.error(f"Operation failed: {e}. pyproject.toml was not modified.")
        sys.exit(2)
    except (ProjectNotFoundError, ProjectDiscoveryError) as e:
        logging.error(f"Operation failed: No project found. Details: {e}")
        sys.exit(3)
    except (ManifestParseError, PersistError) as e:
        logging.error(f"Operation failed: Could not update pyproject.toml. Details: {e}")
        sys.exit(4)
    except (EnvironmentSetupError, LockError, SyncError) as e:
        logging.error(f"Operation failed after step '{e.stage.value}'. Details: {e}")
        if e.manifest_persisted:
            logging.error("pyproject.toml was already updated. Once the problem is fixed, "
                          "run the lock and sync commands to finish updating the environment.")
        sys.exit(5)
    except ProjectLockTimeoutError as e:
        logging.error(f"Operation failed: The project is busy. Details: {e}")
        sys.exit(6)
    except (RemoveError, ProjectLockError, SettingsError) as e:
        # Catch all other business logic errors
        logging.error(f"Error occurred: {e}")
        sys.exit(1)
    except Exception as e:
        # Catch all unexpected exceptions
        logging.error("An unexpected critical error occurred.")
        if args.verbose:
            # Print stack trace in verbose mode for debugging
            logging.exception(e)
        else:
            logging.error(f"Details: {e}")
        sys.exit(127)

    sys.exit(int(status))


if __name__ == "__main__":
    main()
