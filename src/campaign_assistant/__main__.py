import asyncio
import sys

from dotenv import load_dotenv
from loguru import logger

from campaign_assistant.app_config import load_json_config, parse_app_config, resolve_runtime_env
from campaign_assistant.bootstrap import bootstrap_runtime
from campaign_assistant.console import AssistantConsole


async def main() -> None:
    load_dotenv()

    app = parse_app_config(load_json_config())
    env = resolve_runtime_env(app)
    try:
        runtime = bootstrap_runtime(app, env)
    except ValueError as ex:
        logger.error(f"Startup failed: {ex}")
        sys.exit(1)

    console = AssistantConsole(runtime)

    print("campaign-assistant (type 'exit' to quit, '/help' for commands)")
    print(f"User: {app.user_id} (plan={app.user_plan or 'free'}, mode={app.mode})")
    providers = runtime.generator.configured_providers
    print(f"Providers: {', '.join(providers) if providers else 'local fallback only'}")
    print(f"Store: {runtime.store.db_path}")
    if runtime.log_descriptions:
        print(f"Logging: {', '.join(runtime.log_descriptions)}")
    print()

    try:
        while True:
            try:
                user_input = input("you> ")
            except (EOFError, KeyboardInterrupt):
                break

            trimmed = user_input.strip()
            if trimmed in ("exit", "quit"):
                break
            if not trimmed:
                continue

            try:
                print()
                await console.run(trimmed)
                print("\n")
            except Exception as ex:
                logger.error(f"Unhandled error: {ex}")
                print("assistant> Something went wrong handling that message. Please try again.\n")
    finally:
        runtime.close()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
