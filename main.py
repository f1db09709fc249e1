#!/usr/bin/env python3
"""
Queue Monitor - records job queue activity and reports job and worker status
"""
import argparse
import asyncio
import os
import sys

from bootstrap.app import Application
from core.monitor import scopes


def create_app(env_file=".env"):
    """Create and return a new application instance."""
    return Application(env_file=env_file)

def create_env_file():
    """Create a default .env file if it doesn't exist."""
    if not os.path.exists(".env"):
        with open(".env", "w") as f:
            f.write("""# Database Configuration
ENABLE_DATABASE=true
# DATABASE_URL=sqlite+aiosqlite:///queue_monitor.db
DB_HOST=localhost
DB_PORT=3306
DB_NAME=queue_monitor
DB_USER=root
DB_PASS=
# DB_READ_URL=

# Redis Configuration
ENABLE_REDIS=false
REDIS_HOST=localhost
REDIS_PORT=6379

# Monitor Configuration
MONITOR_SENDER=queue
MONITOR_TRACK_WORKERS=true
MONITOR_PING_INTERVAL=15
MONITOR_CACHE_DURATION=3600
MONITOR_EXPOSE_HAS_FAILS=false

# Logging Configuration
LOG_LEVEL=INFO
LOG_TO_FILE=false
LOG_FORMAT=%(asctime)s - %(name)s - %(levelname)s - %(message)s
""")
        print("Created default .env file")

async def list_jobs(app, args):
    job_filter = app.job_filter(**{
        "is": args.scope,
        "sender": args.sender,
        "class": args.job_class,
        "contains": args.contains,
        "pushed_after": args.pushed_after,
        "pushed_before": args.pushed_before,
    })
    rows = await job_filter.fetch_with_last_exec(args.page, args.per_page)
    for field, messages in job_filter.errors.items():
        print(f"Invalid {field}: {' '.join(messages)}", file=sys.stderr)

    for push, last_exec in rows:
        attempt = last_exec.attempt if last_exec else 0
        print(
            f"{push.id:>8}  {push.pushed_at:%Y-%m-%d %H:%M:%S}  {push.sender_name:<12} "
            f"{push.job_uid:<12} {push.job_class:<40} attempt {attempt:<3} "
            f"{scopes.status_label(push, last_exec)}"
        )
    return 1 if job_filter.has_errors() else 0

async def list_groups(app, args, by_class):
    job_filter = app.job_filter(**{
        "is": args.scope,
        "sender": args.sender,
        "class": args.job_class,
        "contains": args.contains,
        "pushed_after": args.pushed_after,
        "pushed_before": args.pushed_before,
    })
    rows = await (job_filter.search_classes() if by_class else job_filter.search_senders())
    for name, count in rows:
        print(f"{count:>8}  {name}")
    return 1 if job_filter.has_errors() else 0

async def list_workers(app, args):
    now = app.env.now()
    for worker in await app.worker_filter(args.sender, not args.all).fetch(args.page, args.per_page):
        last_exec = await app.repository.get_exec(worker.last_exec_id)
        totals = await app.repository.worker_exec_totals(worker.id)
        print(
            f"{worker.id:>6}  {worker.sender_name:<12} {worker.host}:{worker.pid:<8} "
            f"started {totals['started']:<5} done {totals['done']:<5} "
            f"{worker.status(now, last_exec)}"
        )
    return 0

async def run_command(args):
    app = create_app()
    await app.initialize(create_tables=args.create_tables)

    try:
        if args.create_tables:
            print("Monitor tables created")
            return 0
        if args.stop_push is not None:
            found = await app.repository.stop_push(args.stop_push)
            print(f"Push {args.stop_push} stopped" if found else f"Push {args.stop_push} not found")
            return 0 if found else 1
        if args.stop_worker is not None:
            found = await app.repository.stop_worker(args.stop_worker)
            print(f"Worker {args.stop_worker} asked to stop" if found else f"Worker {args.stop_worker} not found")
            return 0 if found else 1
        if args.classes:
            return await list_groups(app, args, by_class=True)
        if args.senders:
            return await list_groups(app, args, by_class=False)
        if args.workers:
            return await list_workers(app, args)
        return await list_jobs(app, args)
    finally:
        await app.cleanup()

def main():
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(description="Queue Monitor - job queue activity and status")
    parser.add_argument('--init', action='store_true', help="Create a default .env file")
    parser.add_argument('--create-tables', action='store_true', help="Create the monitor tables")
    parser.add_argument('--classes', action='store_true', help="Count jobs per job class")
    parser.add_argument('--senders', action='store_true', help="Count jobs per sender")
    parser.add_argument('--workers', action='store_true', help="List active workers")
    parser.add_argument('--all', action='store_true', help="Include finished workers")
    parser.add_argument('--stop-push', type=int, metavar='ID', help="Stop a pushed job")
    parser.add_argument('--stop-worker', type=int, metavar='ID', help="Ask a worker to stop")
    parser.add_argument('--scope', type=str, help="Job scope (waiting, in-progress, done, success, buried, stopped)")
    parser.add_argument('--sender', type=str, help="Sender name")
    parser.add_argument('--class', dest='job_class', type=str, help="Part of the job class name")
    parser.add_argument('--contains', type=str, help="Text contained in job arguments or context")
    parser.add_argument('--pushed-after', type=str, help="YYYY-MM-DDTHH:MM")
    parser.add_argument('--pushed-before', type=str, help="YYYY-MM-DDTHH:MM")
    parser.add_argument('--page', type=int, default=1, help="Page number (default: 1)")
    parser.add_argument('--per-page', type=int, default=20, help="Rows per page (default: 20)")

    args = parser.parse_args()

    if args.init:
        create_env_file()
        print("Queue monitor initialized successfully!")
        return 0

    return asyncio.run(run_command(args))

if __name__ == "__main__":
    sys.exit(main())
