#!/usr/bin/env python3
"""trackd CLI entrypoint."""

import argparse
import logging
import sys

from trackd.lib.config import (
    TrackerConfig,
    clear_current_work_unit,
    get_current_work_unit,
    load_config,
    resolve_root,
    set_current_work_unit,
)
from trackd.lib.errors import TrackdError
from trackd.lib.validate import ValidationError
from trackd.commands import delete as cmd_delete_module
from trackd.commands import done as cmd_done_module
from trackd.commands import init as cmd_init_module
from trackd.commands import list as cmd_list_module
from trackd.commands import new as cmd_new_module
from trackd.commands import plan as cmd_plan_module
from trackd.commands import rebuild as cmd_rebuild_module
from trackd.commands import revert as cmd_revert_module
from trackd.commands import set_status as cmd_set_status_module
from trackd.commands import show as cmd_show_module
from trackd.commands import status as cmd_status_module


def get_config(args) -> TrackerConfig:
    """Resolve the tracker root and load its configuration.

    Exits with status 2 if the configuration cannot be read, or if the
    tracker has not been initialized (except for `trackd init`).
    """
    root = resolve_root(args.root)
    if args.command != "init" and not root.is_dir():
        print(f"ERROR: No tracker at {root}. Run 'trackd init' or pass --root.")
        sys.exit(2)
    try:
        return load_config(root)
    except ValueError as e:
        print(f"ERROR: Invalid configuration: {e}")
        sys.exit(2)


def resolve_work_unit_id(args, config: TrackerConfig) -> str:
    """Resolve work unit ID from args or current context."""
    unit_id = getattr(args, 'id', None)
    if unit_id:
        return unit_id

    current = get_current_work_unit(config.root)
    if current:
        return current

    print("ERROR: No work unit specified. Use 'trackd use <id>' to set the current work unit.")
    sys.exit(2)


def cmd_use(args, config: TrackerConfig) -> int:
    """Set, show, or clear the current work unit context."""
    if args.clear:
        clear_current_work_unit(config.root)
        print("Cleared current work unit context.")
        return 0

    if not args.id:
        current = get_current_work_unit(config.root)
        if current:
            print(f"Current work unit: {current}")
        else:
            print("No current work unit set. Use 'trackd use <id>' to set one.")
        return 0

    if not (config.tracks_dir / args.id).is_dir():
        print(f"ERROR: Work unit '{args.id}' not found.")
        return 1

    set_current_work_unit(config.root, args.id)
    print(f"Now using work unit: {args.id}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog='trackd', description='Work unit tracker')
    parser.add_argument('--root', '-r', help='Tracker root (default: $TRACKD_ROOT or nearest .trackd)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Log state changes and repairs')
    subparsers = parser.add_subparsers(dest='command', required=True)

    # trackd init
    p_init = subparsers.add_parser('init', help='Create a tracker root')
    p_init.set_defaults(func=cmd_init_module.cmd_init)

    # trackd new
    p_new = subparsers.add_parser('new', help='Create work unit')
    p_new.add_argument('title', help='Work unit title')
    p_new.add_argument('--category', '-c', help='Category (default from trackd.env, usually Feature)')
    p_new.add_argument('--id', help='Explicit ID (default: generated from title and date)')
    p_new.add_argument('--attr', '-a', action='append', metavar='KEY=VALUE',
                       help='Category attribute, e.g. platform=shopify (repeatable)')
    p_new.set_defaults(func=cmd_new_module.cmd_new)

    # trackd list
    p_list = subparsers.add_parser('list', help='List work units')
    p_list.set_defaults(func=cmd_list_module.cmd_list)

    # trackd status
    p_status = subparsers.add_parser('status', help='Status report across all work units')
    p_status.add_argument('--json', action='store_true', help='Print the report as JSON')
    p_status.set_defaults(func=cmd_status_module.cmd_status)

    # trackd show
    p_show = subparsers.add_parser('show', help='Show work unit details and plan')
    p_show.add_argument('id', nargs='?', help='Work unit ID (uses current if not specified)')
    p_show.set_defaults(func=cmd_show_module.cmd_show, needs_id=True)

    # trackd use
    p_use = subparsers.add_parser('use', help='Set/show current work unit')
    p_use.add_argument('id', nargs='?', help='Work unit ID to use')
    p_use.add_argument('--clear', action='store_true', help='Clear current work unit')
    p_use.set_defaults(func=cmd_use)

    # trackd plan
    p_plan = subparsers.add_parser('plan', help='Edit the plan')
    plan_sub = p_plan.add_subparsers(dest='plan_cmd', required=True)

    # trackd plan add-phase
    p_add_phase = plan_sub.add_parser('add-phase', help='Append a phase')
    p_add_phase.add_argument('id', nargs='?', help='Work unit ID (uses current if not specified)')
    p_add_phase.add_argument('name', help='Phase name, e.g. "Phase 1: Setup"')
    p_add_phase.set_defaults(func=cmd_plan_module.cmd_plan_add_phase, needs_id=True)

    # trackd plan add-task
    p_add_task = plan_sub.add_parser('add-task', help='Append a task to a phase')
    p_add_task.add_argument('id', nargs='?', help='Work unit ID (uses current if not specified)')
    p_add_task.add_argument('phase', help='Phase number (1-based)')
    p_add_task.add_argument('description', help='Task description')
    p_add_task.add_argument('--parent', '-p', help='Parent task path within the phase, e.g. 2 or 2.1')
    p_add_task.set_defaults(func=cmd_plan_module.cmd_plan_add_task, needs_id=True)

    # trackd done
    p_done = subparsers.add_parser('done', help='Mark a task done')
    p_done.add_argument('id', nargs='?', help='Work unit ID (uses current if not specified)')
    p_done.add_argument('path', help='Task path, e.g. 1.2 or 1.2.1')
    p_done.set_defaults(func=cmd_done_module.cmd_done, needs_id=True)

    # trackd undo
    p_undo = subparsers.add_parser('undo', help='Mark a task not done')
    p_undo.add_argument('id', nargs='?', help='Work unit ID (uses current if not specified)')
    p_undo.add_argument('path', help='Task path, e.g. 1.2 or 1.2.1')
    p_undo.set_defaults(func=cmd_done_module.cmd_undo, needs_id=True)

    # trackd set-status
    p_set_status = subparsers.add_parser('set-status', help='Change work unit status')
    p_set_status.add_argument('id', nargs='?', help='Work unit ID (uses current if not specified)')
    p_set_status.add_argument('status', help='planning, in_progress, completed, blocked, cancelled, reverted')
    p_set_status.add_argument('--reason', help='Why (recorded in the event log)')
    p_set_status.add_argument('--force', action='store_true', help='Skip transition validation')
    p_set_status.set_defaults(func=cmd_set_status_module.cmd_set_status, needs_id=True)

    # trackd delete
    p_delete = subparsers.add_parser('delete', help='Permanently delete a work unit')
    p_delete.add_argument('id', nargs='?', help='Work unit ID (uses current if not specified)')
    p_delete.add_argument('--confirm', action='store_true', required=True, help='Confirm deletion')
    p_delete.set_defaults(func=cmd_delete_module.cmd_delete, needs_id=True)

    # trackd revert
    p_revert = subparsers.add_parser('revert', help='List commits to undo and mark work unit reverted')
    p_revert.add_argument('id', nargs='?', help='Work unit ID (uses current if not specified)')
    p_revert.add_argument('--confirm', action='store_true', help='Apply (otherwise only list candidates)')
    p_revert.add_argument('--purge', action='store_true', help='Delete the work unit instead of marking it')
    p_revert.set_defaults(func=cmd_revert_module.cmd_revert, needs_id=True)

    # trackd rebuild
    p_rebuild = subparsers.add_parser('rebuild', help='Regenerate tracks.md from metadata')
    p_rebuild.set_defaults(func=cmd_rebuild_module.cmd_rebuild)

    # trackd check
    p_check = subparsers.add_parser('check', help='Compare tracks.md against metadata')
    p_check.set_defaults(func=cmd_rebuild_module.cmd_check)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    config = get_config(args)
    if getattr(args, 'needs_id', False):
        args.id = resolve_work_unit_id(args, config)

    try:
        return args.func(args, config)
    except TrackdError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    except ValidationError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
