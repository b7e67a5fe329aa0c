"""
CLI commands for Beacon.
"""

import argparse
import json
import logging
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

from beacon.config import AppConfig, build_config, load_config
from beacon.database.connection import Database
from beacon.database.models import User
from beacon.database.repository import UserRepository
from beacon.database.store import HistoryFilter
from beacon.main import BeaconApp
from beacon.pipeline import SignalReport
from beacon.service import NotificationService


def add_user(
    db: Database,
    user_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
) -> User:
    """Add a new user."""
    repo = UserRepository(db)
    return repo.create(User(id=user_id, email=email, name=name))


def follow_assets(db: Database, user_id: str, symbols: list[str]) -> list[str]:
    """Subscribe a user to assets; returns the full followed list."""
    repo = UserRepository(db)
    for symbol in symbols:
        repo.follow_asset(user_id, symbol)
    return repo.get_followed_assets(user_id)


def emit_signal(app: BeaconApp, payload: dict) -> SignalReport:
    """Push one signal through the pipeline as a feed producer would."""
    return app.on_signal(payload)


def _load_app_config(config_path: Optional[str], db_path: Optional[str]) -> AppConfig:
    config = load_config(config_path) if config_path else build_config({})
    if db_path:
        config.database.path = db_path
    return config


def _print_record(record) -> None:
    status = "read" if record.read else "unread"
    sent = record.sent_at.strftime("%Y-%m-%d %H:%M") if record.sent_at else "-"
    print(f"{sent} [{record.priority}] {record.title} ({status}, id={record.id})")


def main():
    """CLI entry point."""
    parser = argparse.ArgumentParser(description="Beacon CLI")
    parser.add_argument("--config", help="Path to config file")
    parser.add_argument("--db", help="Database path (overrides config)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Command")

    # User commands
    user_parser = subparsers.add_parser("user", help="User management")
    user_subparsers = user_parser.add_subparsers(dest="action")

    add_user_parser = user_subparsers.add_parser("add", help="Add user")
    add_user_parser.add_argument("--id", required=True, help="User ID")
    add_user_parser.add_argument("--email", help="User email")
    add_user_parser.add_argument("--name", help="Display name")

    user_subparsers.add_parser("list", help="List users")

    # Follow commands
    follow_parser = subparsers.add_parser("follow", help="Asset subscriptions")
    follow_subparsers = follow_parser.add_subparsers(dest="action")

    add_follow_parser = follow_subparsers.add_parser("add", help="Follow assets")
    add_follow_parser.add_argument("--user", required=True, help="User ID")
    add_follow_parser.add_argument("--symbols", required=True, help="Comma-separated symbols")

    remove_follow_parser = follow_subparsers.add_parser("remove", help="Unfollow assets")
    remove_follow_parser.add_argument("--user", required=True, help="User ID")
    remove_follow_parser.add_argument("--symbols", required=True, help="Comma-separated symbols")

    show_follow_parser = follow_subparsers.add_parser("show", help="Show followed assets")
    show_follow_parser.add_argument("--user", required=True, help="User ID")

    # Rules commands
    rules_parser = subparsers.add_parser("rules", help="Alert rule management")
    rules_subparsers = rules_parser.add_subparsers(dest="action")

    add_rule_parser = rules_subparsers.add_parser("add", help="Add rule")
    add_rule_parser.add_argument("--user", required=True, help="User ID")
    add_rule_parser.add_argument("--asset", help="Asset symbol (omit for a global rule)")
    add_rule_parser.add_argument("--params", default="{}", help="JSON rule fields")

    list_rules_parser = rules_subparsers.add_parser("list", help="List rules")
    list_rules_parser.add_argument("--user", required=True, help="User ID")

    delete_rule_parser = rules_subparsers.add_parser("delete", help="Delete rule")
    delete_rule_parser.add_argument("--user", required=True, help="User ID")
    delete_rule_parser.add_argument("--id", type=int, required=True, help="Rule ID")

    # Settings commands
    settings_parser = subparsers.add_parser("settings", help="Notification settings")
    settings_subparsers = settings_parser.add_subparsers(dest="action")

    show_settings_parser = settings_subparsers.add_parser("show", help="Show settings")
    show_settings_parser.add_argument("--user", required=True, help="User ID")

    set_settings_parser = settings_subparsers.add_parser("set", help="Update settings")
    set_settings_parser.add_argument("--user", required=True, help="User ID")
    set_settings_parser.add_argument("--params", required=True, help="JSON settings changes")

    # Device commands
    device_parser = subparsers.add_parser("device", help="Push device registration")
    device_subparsers = device_parser.add_subparsers(dest="action")

    add_device_parser = device_subparsers.add_parser("add", help="Register device token")
    add_device_parser.add_argument("--user", required=True, help="User ID")
    add_device_parser.add_argument("--token", required=True, help="Device token")
    add_device_parser.add_argument(
        "--platform", default="web", choices=["web", "android", "ios"]
    )

    # Notification commands
    notif_parser = subparsers.add_parser("notifications", help="Notification history")
    notif_subparsers = notif_parser.add_subparsers(dest="action")

    list_notif_parser = notif_subparsers.add_parser("list", help="List notifications")
    list_notif_parser.add_argument("--user", required=True, help="User ID")
    list_notif_parser.add_argument("--type", help="Notification type filter")
    list_notif_parser.add_argument("--priority", help="Priority filter")
    list_notif_parser.add_argument("--asset", help="Asset filter")
    list_notif_parser.add_argument("--unread", action="store_true", help="Unread only")
    list_notif_parser.add_argument("--page", type=int, default=1)
    list_notif_parser.add_argument("--limit", type=int, default=20)

    groups_notif_parser = notif_subparsers.add_parser("groups", help="Grouped view")
    groups_notif_parser.add_argument("--user", required=True, help="User ID")

    read_notif_parser = notif_subparsers.add_parser("read", help="Mark as read")
    read_notif_parser.add_argument("--user", required=True, help="User ID")
    read_notif_parser.add_argument("--ids", help="Comma-separated notification IDs")
    read_notif_parser.add_argument("--all", action="store_true", help="Mark all as read")

    archive_notif_parser = notif_subparsers.add_parser("archive", help="Archive")
    archive_notif_parser.add_argument("--user", required=True, help="User ID")
    archive_notif_parser.add_argument("--ids", required=True, help="Comma-separated notification IDs")

    # Signal commands
    signal_parser = subparsers.add_parser("signal", help="Signal ingestion")
    signal_subparsers = signal_parser.add_subparsers(dest="action")

    emit_signal_parser = signal_subparsers.add_parser("emit", help="Process a signal now")
    emit_signal_parser.add_argument("--json", required=True, help="Signal payload as JSON")

    # DB commands
    db_parser = subparsers.add_parser("db", help="Database management")
    db_subparsers = db_parser.add_subparsers(dest="action")
    db_subparsers.add_parser("init", help="Create tables")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Initialize database
    config = _load_app_config(args.config, args.db)
    db = Database(config.database.path)
    db.initialize()
    app = BeaconApp(config=config, db=db)
    service: NotificationService = app.service

    # Handle commands
    if args.command == "user":
        if args.action == "add":
            user = add_user(db, args.id, email=args.email, name=args.name)
            print(f"Created user with ID: {user.id}")
        elif args.action == "list":
            for user in app.user_repo.list_all():
                print(f"ID: {user.id}, Email: {user.email}")

    elif args.command == "follow":
        symbols = [s.strip() for s in getattr(args, "symbols", "").split(",") if s.strip()]
        if args.action == "add":
            followed = follow_assets(db, args.user, symbols)
            print(f"Following: {', '.join(followed)}")
        elif args.action == "remove":
            for symbol in symbols:
                app.user_repo.unfollow_asset(args.user, symbol)
            print(f"Following: {', '.join(app.user_repo.get_followed_assets(args.user))}")
        elif args.action == "show":
            for symbol in app.user_repo.get_followed_assets(args.user):
                print(symbol)

    elif args.command == "rules":
        if args.action == "add":
            params = json.loads(args.params)
            if args.asset:
                params["asset_symbol"] = args.asset
            rule = service.create_alert_setting(args.user, **params)
            print(f"Created rule with ID: {rule.id}")
        elif args.action == "list":
            for rule in service.list_alert_settings(args.user):
                scope = rule.asset_symbol or "global"
                print(
                    f"ID: {rule.id}, {scope}: sentiment>={rule.sentiment_threshold}, "
                    f"price>={rule.price_change_threshold}%, {rule.alert_frequency}"
                )
        elif args.action == "delete":
            service.delete_alert_setting(args.user, args.id)
            print(f"Deleted rule {args.id}")

    elif args.command == "settings":
        if args.action == "show":
            settings = service.get_settings(args.user)
            print(json.dumps(_settings_to_dict(settings), indent=2))
        elif args.action == "set":
            settings = service.update_settings(args.user, json.loads(args.params))
            print(json.dumps(_settings_to_dict(settings), indent=2))

    elif args.command == "device":
        if args.action == "add":
            token = service.register_device_token(args.user, args.token, args.platform)
            print(f"Registered device {token.id} ({token.platform})")

    elif args.command == "notifications":
        if args.action == "list":
            filters = HistoryFilter(
                type=args.type,
                priority=args.priority,
                asset_symbol=args.asset,
                unread_only=args.unread,
            )
            page = service.list_notifications(args.user, filters, page=args.page, limit=args.limit)
            for record in page.records:
                _print_record(record)
            print(f"Page {page.page}/{page.total_pages} ({page.total} total)")
            print(f"Unread: {service.unread_count(args.user)}")
        elif args.action == "groups":
            for group in service.grouped(args.user):
                print(
                    f"{group.group_id}: {group.latest_record.title} "
                    f"x{group.count} ({group.unread_count} unread, {group.highest_priority})"
                )
        elif args.action == "read":
            if args.all:
                changed = service.mark_all_read(args.user)
            else:
                ids = [i.strip() for i in (args.ids or "").split(",") if i.strip()]
                changed = service.mark_read(args.user, ids)
            print(f"Marked {changed} as read")
        elif args.action == "archive":
            ids = [i.strip() for i in args.ids.split(",") if i.strip()]
            print(f"Archived {service.archive(args.user, ids)}")

    elif args.command == "signal":
        if args.action == "emit":
            report = emit_signal(app, json.loads(args.json))
            if report.rejected:
                print(f"Rejected: {report.error}")
            else:
                print(
                    f"Created {len(report.records)} notifications "
                    f"({report.rate_limited} rate limited, {len(report.failed_users)} failed)"
                )

    elif args.command == "db":
        if args.action == "init":
            print("Database initialized")

    app.close()


def _settings_to_dict(settings) -> dict:
    return {
        "push_enabled": settings.push_enabled,
        "email_enabled": settings.email_enabled,
        "sound_enabled": settings.sound_enabled,
        "grouping_enabled": settings.grouping_enabled,
        "priority_threshold": settings.priority_threshold,
        "quiet_hours": {
            "enabled": settings.quiet_hours.enabled,
            "start": settings.quiet_hours.start,
            "end": settings.quiet_hours.end,
        },
        "max_per_hour": settings.max_per_hour,
    }


if __name__ == "__main__":
    main()
