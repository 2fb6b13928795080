import asyncio
import logging
import signal

from dotenv import load_dotenv

from core.assistant import Assistant
from core.config import Settings
from core.dashboard import DashboardServer
from transports.telegram_bot import TelegramTransport


async def main():
    load_dotenv()
    settings = Settings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s :: %(message)s",
    )

    assistant = Assistant.from_settings(settings)
    telegram_transport = TelegramTransport(assistant, settings.telegram_token)

    dashboard = None
    if settings.web_server_enabled:
        dashboard = DashboardServer(
            assistant.knowledge, host=settings.web_server_host, port=settings.web_server_port
        )
        await dashboard.start()

    stop_event = asyncio.Event()

    def _signal_handler(*_):
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())

    assistant.start_background()
    telegram_task = asyncio.create_task(telegram_transport.start())

    await stop_event.wait()

    await telegram_transport.stop()
    await telegram_task
    if dashboard is not None:
        await dashboard.stop()
    await assistant.close()


if __name__ == "__main__":
    asyncio.run(main())
