"""Forum Core Entry Point.

Command-line entry point for the forum core. It loads configuration,
sets up logging, wires the core services and the logic layer together,
and runs administrative commands against the forum database.
"""

import sys
import argparse
import logging
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional


# Import configuration
from config.config_manager import ConfigManager, LoggingConfig

# Import core components
from core.content_renderer import get_renderer
from core.crypto_manager import TokenSigner
from core.db_manager import DBManager
from core.error_handler import ForumError, ValidationError, get_error_handler
from core.file_manager import AttachmentStore
from core.mail_transport import get_transport

# Import logic layer
from logic.forum_manager import ForumManager
from logic.member_manager import MemberManager
from logic.moderation_manager import ModerationManager
from logic.report_manager import ReportManager
from logic.subscription_manager import SubscriptionManager
from logic.thread_manager import ThreadManager


LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def setup_logging(logging_config: LoggingConfig, log_path: Path):
    """
    Configure application logging.

    Args:
        logging_config: Level and rotation settings
        log_path: Path to log file
    """
    # Ensure log directory exists
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = RotatingFileHandler(
        log_path,
        maxBytes=logging_config.max_log_size,
        backupCount=logging_config.backup_count,
        encoding='utf-8'
    )

    # Configure root logger
    logging.basicConfig(
        level=getattr(logging, logging_config.level.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            file_handler,
            logging.StreamHandler(sys.stderr)
        ],
        force=True
    )

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized at level {logging_config.level}")
    logger.info(f"Log file: {log_path}")


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description='Forum Core - forums, threads, posts and subscriptions',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Create the database schema
  python main.py init-db

  # Posts per month
  python main.py report monthly-posts

  # Post, topic and author counts of forum holder 1
  python main.py stats 1

  # Specify custom config file
  python main.py --config /path/to/config.yaml init-db
        """
    )

    parser.add_argument(
        '--config',
        type=str,
        default=None,
        help='Path to custom configuration file'
    )

    parser.add_argument(
        '--log-level',
        type=str,
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
        default=None,
        help='Logging level (default: from config or INFO)'
    )

    commands = parser.add_subparsers(dest='command', required=True)

    commands.add_parser('init-db', help='Create the database schema')

    report = commands.add_parser('report', help='Print a monthly report')
    report.add_argument('name', choices=['monthly-posts', 'signups'])

    stats = commands.add_parser('stats', help='Print counts for a forum holder')
    stats.add_argument('holder_id', type=int)

    return parser.parse_args(argv)


@dataclass
class Application:
    """The wired-up services of a running forum core."""
    config_manager: ConfigManager
    db_manager: DBManager
    forum_manager: ForumManager
    thread_manager: ThreadManager
    subscription_manager: SubscriptionManager
    moderation_manager: ModerationManager
    member_manager: MemberManager
    report_manager: ReportManager


def build_application(config_manager: ConfigManager) -> Application:
    """
    Create every service from configuration and connect them.

    Args:
        config_manager: Loaded configuration

    Returns:
        Application with an initialized database

    Raises:
        ValidationError: If the token signing secret is still unset
    """
    logger = logging.getLogger(__name__)

    forum_config = config_manager.get_forum_config()
    storage_config = config_manager.get_storage_config()
    notification_config = config_manager.get_notification_config()
    security_config = config_manager.get_security_config()

    if security_config.uses_placeholder():
        raise ValidationError(
            "security.secret_key is not set; configure a private value "
            "(or FORUM_SECURITY__SECRET_KEY) before running the forum"
        )

    # Initialize database
    logger.info("Initializing database...")
    db_path = config_manager.expand_path(storage_config.db_path)
    db_manager = DBManager(db_path)
    db_manager.initialize_database()

    attachment_store = AttachmentStore(
        config_manager.expand_path(storage_config.attachments_folder),
        max_file_size=storage_config.max_attachment_size
    )

    thread_manager = ThreadManager(
        db_manager,
        attachment_store=attachment_store,
        renderer=get_renderer(forum_config.content_parser),
        posts_per_page=forum_config.posts_per_page
    )

    transport = get_transport(
        notification_config.transport,
        api_key=notification_config.sendgrid_api_key,
        from_address=notification_config.from_address
    )
    subscription_manager = SubscriptionManager(
        db_manager,
        transport,
        TokenSigner(security_config.secret_key),
        base_url=notification_config.base_url,
        delivery_workers=notification_config.delivery_workers,
        notify_moderators=forum_config.notify_moderators,
        post_link=thread_manager.post_link,
        error_handler=get_error_handler()
    )
    subscription_manager.attach(thread_manager)
    logger.info(f"Notifications use the {notification_config.transport} transport")

    return Application(
        config_manager=config_manager,
        db_manager=db_manager,
        forum_manager=ForumManager(
            db_manager,
            recent_posts_limit=forum_config.recent_posts_limit,
            popular_threads_limit=forum_config.popular_threads_limit
        ),
        thread_manager=thread_manager,
        subscription_manager=subscription_manager,
        moderation_manager=ModerationManager(db_manager, thread_manager),
        member_manager=MemberManager(db_manager, admin_email=forum_config.admin_email),
        report_manager=ReportManager(db_manager),
    )


def run_command(app: Application, args: argparse.Namespace) -> int:
    """
    Run the selected command and print its result.

    Returns:
        Process exit code
    """
    if args.command == 'init-db':
        print(f"Database ready at {app.db_manager.db_path}")
    elif args.command == 'report':
        if args.name == 'monthly-posts':
            rows = app.report_manager.monthly_posts()
        else:
            rows = app.report_manager.member_signups()
        for month, count in rows:
            print(f"{month}\t{count}")
    elif args.command == 'stats':
        stats = app.forum_manager.holder_stats(args.holder_id)
        for name, value in stats.items():
            print(f"{name}\t{value}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main application entry point.

    Loads configuration, initializes all components and runs the command.
    """
    # Parse command-line arguments
    args = parse_arguments(argv)

    # Initialize configuration manager
    config_path = Path(args.config) if args.config else None
    config_manager = ConfigManager(config_path)

    logging_config = config_manager.get_logging_config()

    # Override log level if specified
    if args.log_level:
        logging_config.level = args.log_level

    setup_logging(logging_config, config_manager.expand_path(logging_config.log_path))

    logger = logging.getLogger(__name__)
    logger.info("=" * 60)
    logger.info(f"Forum Core running command: {args.command}")
    logger.info("=" * 60)

    try:
        app = build_application(config_manager)
        return run_command(app, args)
    except ForumError as e:
        get_error_handler().handle_error(e, args.command, show_notification=False)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == '__main__':
    sys.exit(main())
