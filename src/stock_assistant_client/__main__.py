import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from stock_assistant_client.app_config import load_json_config, parse_app_config
from stock_assistant_client.console import ConsoleApp
from stock_assistant_client.logging_config import setup_logging
from stock_assistant_client.services.session_controller import SessionController


async def main() -> None:
    load_dotenv()

    config = load_json_config()
    app_config = parse_app_config(config)

    try:
        session_config = app_config.to_session_config()
    except ValueError as ex:
        setup_logging(level=app_config.log_level, consumers=app_config.log_consumers)
        logger.error(str(ex))
        sys.exit(1)

    log_descriptions = setup_logging(
        level=app_config.log_level,
        consumers=app_config.log_consumers,
        session_id=session_config.session_id,
    )

    session = SessionController(session_config)
    app = ConsoleApp(session)

    print("stock-assistant (type 'exit' to quit, '/help' for commands)")
    print(f"Server: {session_config.base_url}")
    print(f"Session: {session_config.session_id}")
    if not session_config.streaming:
        print("Streaming: off (replies arrive in one piece)")
    if log_descriptions:
        print(f"Logging: {', '.join(log_descriptions)}")
    print()

    try:
        await session.start()
        if session.last_error is not None:
            print(f"{ConsoleApp.LINE_PREFIX}Initial stock load failed: {session.last_error}\n")

        while True:
            try:
                user_input = await asyncio.to_thread(input, ConsoleApp.USER_PROMPT)
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()

            if trimmed in ("exit", "quit"):
                break

            if not trimmed:
                continue

            try:
                print()
                await app.handle(trimmed)
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
    finally:
        await session.stop()


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
