# storykeeper/cli/lifecycle.py
"""
CLI commands for story lifecycle and comment trees.

Usage:
    python -m storykeeper.cli.lifecycle status --tenant acme story-1 story-2
    python -m storykeeper.cli.lifecycle archive --tenant acme story-1 story-2
    python -m storykeeper.cli.lifecycle unarchive --tenant acme story-1
    python -m storykeeper.cli.lifecycle recover --tenant acme
    python -m storykeeper.cli.lifecycle tree --tenant acme story-1
    python -m storykeeper.cli.lifecycle regenerate --tenant acme --disable-commenting
    python -m storykeeper.cli.lifecycle run-jobs --max-jobs 10
"""

import argparse
import sys

from dotenv import load_dotenv

load_dotenv()


def _setup():
    from storykeeper.config import get_settings
    from storykeeper.database import init_db
    from storykeeper.logging_config import configure_logging

    settings = get_settings()
    configure_logging(json_format=settings.LOG_JSON, level=settings.LOG_LEVEL)
    init_db()


def _print_story(story) -> None:
    print(f"{story.id}: {story.state.value} (revision {story.revision})")
    if story.archived_at:
        print(f"  Archived at: {story.archived_at.isoformat()}")
    if story.unarchived_at:
        print(f"  Unarchived at: {story.unarchived_at.isoformat()}")


def cmd_status(args):
    """Show lifecycle state of stories."""
    from storykeeper.dependencies import get_state_store

    state_store = get_state_store()
    story_ids = args.story_ids or state_store.list_story_ids(args.tenant)

    print(f"\n=== Stories ({args.tenant}) ===\n")
    missing = 0
    for story_id in story_ids:
        story = state_store.get_story(args.tenant, story_id)
        if story is None:
            print(f"{story_id}: not found")
            missing += 1
        else:
            _print_story(story)
    print()

    if missing:
        sys.exit(1)


def _cmd_move(args, archive: bool):
    from storykeeper.dependencies import get_lifecycle_service
    from storykeeper.services.lifecycle.errors import ArchiveError

    service = get_lifecycle_service()
    service.initiated_by = "cli"
    verb = "Archiving" if archive else "Unarchiving"
    print(f"\n{verb} {len(args.story_ids)} stories...\n")

    failed = 0
    for story_id in args.story_ids:
        if archive:
            result = service.archive_story(args.tenant, story_id)
        else:
            result = service.unarchive_story(args.tenant, story_id)

        if result.story is None:
            print(f"{story_id}: not found")
            failed += 1
            continue

        if result.error:
            print(f"{story_id}: aborted: {result.error}")
            failed += 1
        elif not result.marked:
            print(f"{story_id}: skipped, already {result.story.state.value}")
        else:
            try:
                result.move.raise_for_failure()
                print(f"{story_id}: moved {result.move.comments_moved} comments")
            except ArchiveError as e:
                print(f"{story_id}: failed ({e.reason.value}): {e}")
                failed += 1
        _print_story(result.story)

    if failed:
        sys.exit(1)


def cmd_archive(args):
    """Archive stories: move comments to the cold tier."""
    _cmd_move(args, archive=True)


def cmd_unarchive(args):
    """Unarchive stories: move comments back to the live tier."""
    _cmd_move(args, archive=False)


def cmd_recover(args):
    """Settle stories whose move was cut off mid-flight."""
    from storykeeper.dependencies import get_lifecycle_service

    service = get_lifecycle_service()
    service.initiated_by = "cli"
    results = service.recover_stories(args.tenant, args.story_ids or None)

    print(f"\n=== Recovery ({args.tenant}) ===\n")
    if not results:
        print("No stories in flight")

    failed = 0
    for result in results:
        if result.success:
            print(f"{result.story_id}: {result.direction.value} finished, {result.move.comments_moved} comments moved")
        else:
            reason = result.error or (result.move.error if result.move else "unknown")
            print(f"{result.story_id}: {result.direction.value} not completed: {reason}")
            failed += 1
        if result.story is not None:
            _print_story(result.story)
    print()

    if failed:
        sys.exit(1)


def cmd_tree(args):
    """Rebuild one story's comment tree."""
    from storykeeper.dependencies import get_tree_service
    from storykeeper.services.lifecycle.errors import StoryNotFoundError
    from storykeeper.services.threading.tree_builder import iter_depth_first

    try:
        tree = get_tree_service().generate_tree_for_story(args.tenant, args.story_id)
    except StoryNotFoundError as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"\nComments: {tree.comment_count}")
    print(f"Roots: {len(tree.roots)}")

    if args.show:
        print()
        for node in iter_depth_first(tree.roots):
            print(f"{'  ' * node.depth}- {node.id} ({node.reply_count} replies)")

    if tree.warnings:
        print("\nIntegrity warnings:")
        for warning in tree.warnings:
            print(f"  - {warning.kind.value} at {warning.comment_id}: {warning.detail}")
    print()


def cmd_regenerate(args):
    """Enqueue a tenant-wide tree regeneration job."""
    from storykeeper.dependencies import get_tree_service

    result = get_tree_service().regenerate_story_trees(
        args.tenant,
        disable_commenting=args.disable_commenting,
        disable_commenting_message=args.message,
    )

    if not result.accepted:
        print(f"Job rejected: {result.error}")
        sys.exit(1)
    print(f"Job accepted: {result.job_id}")


def cmd_run_jobs(args):
    """Run pending regeneration jobs from the database queue."""
    from storykeeper.dependencies import get_job_queue, get_tree_service
    from storykeeper.services.threading.tree_service import run_pending_jobs

    ran = run_pending_jobs(get_tree_service(), get_job_queue(), max_jobs=args.max_jobs)
    print(f"Ran {ran} jobs")


def main():
    parser = argparse.ArgumentParser(
        description="Storykeeper lifecycle CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Archive two stories
  python -m storykeeper.cli.lifecycle archive --tenant acme story-1 story-2

  # Finish moves cut off by a crash or outage
  python -m storykeeper.cli.lifecycle recover --tenant acme

  # Rebuild and print a tree
  python -m storykeeper.cli.lifecycle tree --tenant acme story-1 --show

  # Queue and then run a tenant-wide regeneration
  python -m storykeeper.cli.lifecycle regenerate --tenant acme
  python -m storykeeper.cli.lifecycle run-jobs
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # status command
    status_parser = subparsers.add_parser("status", help="Show story lifecycle state")
    status_parser.add_argument("--tenant", required=True, help="Tenant ID")
    status_parser.add_argument("story_ids", nargs="*", help="Story IDs (default: all stories of the tenant)")
    status_parser.set_defaults(func=cmd_status)

    # archive command
    archive_parser = subparsers.add_parser("archive", help="Archive stories")
    archive_parser.add_argument("--tenant", required=True, help="Tenant ID")
    archive_parser.add_argument("story_ids", nargs="+", help="Story IDs")
    archive_parser.set_defaults(func=cmd_archive)

    # unarchive command
    unarchive_parser = subparsers.add_parser("unarchive", help="Unarchive stories")
    unarchive_parser.add_argument("--tenant", required=True, help="Tenant ID")
    unarchive_parser.add_argument("story_ids", nargs="+", help="Story IDs")
    unarchive_parser.set_defaults(func=cmd_unarchive)

    # recover command
    recover_parser = subparsers.add_parser("recover", help="Settle stories stuck mid-move")
    recover_parser.add_argument("--tenant", required=True, help="Tenant ID")
    recover_parser.add_argument("story_ids", nargs="*", help="Story IDs (default: all stories of the tenant)")
    recover_parser.set_defaults(func=cmd_recover)

    # tree command
    tree_parser = subparsers.add_parser("tree", help="Rebuild one story's comment tree")
    tree_parser.add_argument("--tenant", required=True, help="Tenant ID")
    tree_parser.add_argument("story_id", help="Story ID")
    tree_parser.add_argument("--show", action="store_true", help="Print the tree")
    tree_parser.set_defaults(func=cmd_tree)

    # regenerate command
    regen_parser = subparsers.add_parser("regenerate", help="Enqueue tenant-wide tree regeneration")
    regen_parser.add_argument("--tenant", required=True, help="Tenant ID")
    regen_parser.add_argument("--disable-commenting", action="store_true", help="Carry disable-commenting flag")
    regen_parser.add_argument("--message", default=None, help="Disable-commenting message")
    regen_parser.set_defaults(func=cmd_regenerate)

    # run-jobs command
    jobs_parser = subparsers.add_parser("run-jobs", help="Run pending regeneration jobs")
    jobs_parser.add_argument("--max-jobs", type=int, default=None, help="Stop after this many jobs")
    jobs_parser.set_defaults(func=cmd_run_jobs)

    args = parser.parse_args()

    _setup()
    args.func(args)


if __name__ == "__main__":
    main()
