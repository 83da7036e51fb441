import argparse
import logging
import os
import sys


def main():
    parser = argparse.ArgumentParser(description='Listen Analytics API Server')
    parser.add_argument('--host', default='127.0.0.1', help='Host to bind to')
    parser.add_argument('--port', type=int, default=8000, help='Port to bind to')
    parser.add_argument('--reload', action='store_true', help='Enable auto-reload')
    parser.add_argument('--log-level', default='info', help='Uvicorn log level')
    args = parser.parse_args()

    if not os.environ.get("LISTEN_ANALYTICS_DATABASE_URL"):
        print("LISTEN_ANALYTICS_DATABASE_URL is not set.", file=sys.stderr)
        sys.exit(1)

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    import uvicorn

    uvicorn.run(
        "listen_analytics.api.app:app",
        host=args.host,
        port=args.port,
        log_level=args.log_level,
        reload=args.reload,
    )

if __name__ == "__main__":
    main()
