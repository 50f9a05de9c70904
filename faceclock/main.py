# faceclock/main.py
"""
FaceClock - Main Entry Point.

Wires the modules together:
- core/: settings, camera, TFLite models
- data/: SQLite gallery and attendance store
- processing/: voting, attendance and the scanning session
- web/: JSON API

Usage:
    faceclock                          # Run with defaults
    faceclock --threshold 0.85         # Stricter matching
    faceclock --no-web --timeout 300   # No API, 5-minute sessions
    python -m faceclock --verbose
"""
import argparse
import logging
import sys
import threading

from .core.settings import settings
from .errors import ConfigurationError, FaceClockError

logger = logging.getLogger(__name__)

# Current scanning session, read by the web thread
_current_session = None


def setup_logging(verbose=False):
    level = logging.DEBUG if verbose else logging.INFO
    handlers = [logging.StreamHandler()]
    if settings.IS_PI:
        handlers.append(logging.FileHandler('faceclock.log', encoding='utf-8'))
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog='faceclock',
        description='FaceClock - Face Recognition Attendance',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  faceclock                          # Run with defaults
  faceclock --threshold 0.85         # Custom similarity threshold
  faceclock --no-web --camera 1
        """
    )

    # Matching
    parser.add_argument(
        '--threshold', '-t',
        type=float,
        metavar='VALUE',
        help=f'Similarity threshold (default: {settings.SIMILARITY_THRESHOLD})'
    )
    parser.add_argument(
        '--margin', '-m',
        type=float,
        metavar='VALUE',
        help=f'Best-vs-second margin (default: {settings.MARGIN_THRESHOLD})'
    )

    # Camera
    parser.add_argument(
        '--camera', '-c',
        type=int,
        default=0,
        metavar='ID',
        help='Camera device ID (default: 0)'
    )
    parser.add_argument(
        '--resolution', '-r',
        type=str,
        metavar='WxH',
        help='Camera resolution, e.g. 640x480'
    )

    # Web server
    parser.add_argument(
        '--no-web',
        action='store_true',
        help='Disable web server'
    )
    parser.add_argument(
        '--port', '-p',
        type=int,
        metavar='PORT',
        help=f'Web server port (default: {settings.WEB_PORT})'
    )

    # Timing
    parser.add_argument(
        '--timeout',
        type=float,
        metavar='SEC',
        help=f'Scanning session timeout (default: {settings.SESSION_TIMEOUT}s)'
    )
    parser.add_argument(
        '--interval',
        type=float,
        metavar='SEC',
        help=f'Seconds between cycles (default: {settings.CYCLE_INTERVAL}s)'
    )

    parser.add_argument(
        '--config',
        type=str,
        metavar='PATH',
        help='JSON config file'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Verbose logging'
    )

    return parser.parse_args(argv)


def apply_arguments(args, target=None):
    """
    Apply command line arguments to settings.

    Returns:
        List of human-readable changes
    """
    target = target or settings
    changes = []

    if args.config:
        target.CONFIG_PATH = args.config
        target._load_from_json()
        target._compute_defaults()
        changes.append(f"Config: {args.config}")

    if args.threshold is not None:
        target.SIMILARITY_THRESHOLD = args.threshold
        changes.append(f"Threshold: {args.threshold}")
    if args.margin is not None:
        target.MARGIN_THRESHOLD = args.margin
        changes.append(f"Margin: {args.margin}")

    if args.no_web:
        target.ENABLE_WEB_SERVER = False
        changes.append("Web: disabled")
    if args.port:
        target.WEB_PORT = args.port
        changes.append(f"Port: {args.port}")

    if args.resolution:
        try:
            w, h = map(int, args.resolution.lower().split('x'))
            target.CAMERA_WIDTH = w
            target.CAMERA_HEIGHT = h
            changes.append(f"Resolution: {w}x{h}")
        except ValueError:
            raise ConfigurationError(f"Invalid resolution: {args.resolution} (use WxH, e.g. 640x480)")

    if args.timeout is not None:
        target.SESSION_TIMEOUT = args.timeout
        changes.append(f"Timeout: {args.timeout}s")
    if args.interval is not None:
        target.CYCLE_INTERVAL = args.interval
        changes.append(f"Interval: {args.interval}s")

    if args.verbose:
        changes.append("Verbose: ON")

    return changes


def start_web_server(gallery, store, detector=None, embedder=None):
    """Run the web server in its own daemon thread."""
    from .web.server import create_app, run_server

    app = create_app(lambda: _current_session, gallery, store, settings,
                     detector=detector, embedder=embedder)
    thread = threading.Thread(
        target=run_server,
        kwargs={'app': app, 'port': settings.WEB_PORT},
        daemon=True,
    )
    thread.start()
    return thread


def main(argv=None):
    """Main entry point."""
    global _current_session

    # === 0. ARGUMENTS & CONFIG ===
    args = parse_arguments(argv)
    setup_logging(args.verbose)
    try:
        for change in apply_arguments(args):
            logger.info(f"Command-line override: {change}")
        settings.validate()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 2

    from .core.camera import create_camera
    from .core.model_factory import create_detector, create_embedder, create_scanning_session
    from .data.database import SqliteAttendanceStore, SqliteGallery, init_db

    # === 1. DATABASE ===
    try:
        init_db(settings.DB_PATH)
    except FaceClockError as e:
        logger.error(f"Database error: {e}")
        return 1

    # === 2. MODELS ===
    try:
        detector = create_detector(settings)
        embedder = create_embedder(settings)
    except FaceClockError as e:
        logger.error(f"Model error: {e}")
        return 1

    gallery = SqliteGallery(settings.DB_PATH, dim=settings.EMBEDDING_DIM)
    store = SqliteAttendanceStore(settings.DB_PATH)
    try:
        logger.info(f"Gallery: {gallery.count()} employee(s) enrolled")
    except FaceClockError as e:
        logger.error(f"Database error: {e}")
        return 1

    # === 3. CAMERA ===
    camera = create_camera(
        device_id=args.camera,
        width=settings.CAMERA_WIDTH,
        height=settings.CAMERA_HEIGHT,
        is_pi=settings.IS_PI,
    )
    if not camera.open():
        return 1

    logger.info(f"CONFIG: threshold={settings.SIMILARITY_THRESHOLD}, "
                f"margin={settings.MARGIN_THRESHOLD}, "
                f"gap={settings.MIN_SESSION_GAP_SECONDS}s, "
                f"web={settings.ENABLE_WEB_SERVER}:{settings.WEB_PORT}")

    # === 4. WEB SERVER (background) ===
    if settings.ENABLE_WEB_SERVER:
        start_web_server(gallery, store, detector, embedder)

    # === 5. SCANNING SESSIONS ===
    exit_code = 0
    try:
        while True:
            _current_session = create_scanning_session(
                settings, detector, embedder, gallery, store, camera
            )
            reason = _current_session.run()
            logger.info(f"Session ended: {reason}")
            if reason == "camera_unavailable":
                exit_code = 1
                break
    except KeyboardInterrupt:
        logger.info("🛑 Stopped (Ctrl+C)")
        if _current_session is not None:
            _current_session.stop_scanning()
    finally:
        camera.release()

    return exit_code


if __name__ == "__main__":
    sys.exit(main())
