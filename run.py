"""TailorBook front startup script. Run with python run.py."""
import logging
import os
import sys


def main():
    """Configure logging and start the development server."""
    _use_reloader = (os.environ.get('FLASK_USE_RELOADER', '1') == '1')
    _is_reloader_child = (os.environ.get('WERKZEUG_RUN_MAIN') == 'true')
    _should_log_startup = (not _use_reloader) or _is_reloader_child

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler('app_startup.log', encoding='utf-8'),
            logging.StreamHandler(sys.stdout)
        ]
    )
    logger = logging.getLogger('TailorBook_Startup')

    try:
        from app import app
        import config

        if _should_log_startup:
            logger.info("[START] TailorBook front starting...")
            logger.info(f"[INFO] API origin: {config.API_ORIGIN}")
            if config.DEBUG_PROXY:
                logger.info("[INFO] Proxy exchange logging is on (DEBUG_PROXY=1)")

        app.run(
            host='0.0.0.0',
            port=int(os.environ.get('PORT', '3000')),
            debug=not config.IS_PRODUCTION,
            use_reloader=_use_reloader,
        )
    except KeyboardInterrupt:
        print("\n[STOP] Server stopped by user.")
    except Exception as e:
        logger.error(f"[ERROR] Server failed to start: {str(e)}")
        print("[INFO] See app_startup.log for details.")
        raise
    finally:
        if _should_log_startup:
            print("[END] TailorBook front shut down.")


if __name__ == '__main__':
    main()
