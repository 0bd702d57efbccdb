import argparse
import sys

from dotenv import load_dotenv

from omeroqtypes.cli.question_commands import handle_list_questions, register_question_commands
from omeroqtypes.cli.upgrade_commands import handle_status, handle_upgrade, register_upgrade_commands
from omeroqtypes.config import configure_logging, load_config


def handle_serve(config, args):
    """Handles the "serve" command (development server)."""
    from omeroqtypes.web.app import create_app

    app = create_app(config)
    app.run(host=args.host, port=args.port, debug=args.debug)
    return 0


HANDLERS = {
    "upgrade": handle_upgrade,
    "status": handle_status,
    "list-questions": handle_list_questions,
    "serve": handle_serve,
}


def build_parser():
    parser = argparse.ArgumentParser(description="OMERO question types CLI.")
    parser.add_argument("--config", default="config.yaml", help="Path to config.yaml.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    register_upgrade_commands(subparsers)
    register_question_commands(subparsers)

    parser_serve = subparsers.add_parser("serve", help="Run the authoring web frontend.")
    parser_serve.add_argument("--host", default="127.0.0.1", help="Bind address.")
    parser_serve.add_argument("--port", type=int, default=5000, help="Port.")
    parser_serve.add_argument("--debug", action="store_true", help="Enable the Flask debugger.")
    return parser


def main(argv=None):
    load_dotenv()
    args = build_parser().parse_args(argv)
    config = load_config(args.config)
    configure_logging(config)
    return HANDLERS[args.command](config, args)


if __name__ == "__main__":
    sys.exit(main())
