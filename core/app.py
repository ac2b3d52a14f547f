import asyncio
import signal
import sys

from dotenv import load_dotenv

from core.relay import RelayCore
from runtime import version
from services.mj.actions import MJActionClient
from services.mj.sse_client import MJEventSSEClient
from services.mj.subscriber import UpstreamSubscriber
from services.relay_api import RelayApiServer
from shared.config.relay import load_relay_config
from shared.logging.logger import get_logger

log = get_logger("core.app")


async def main(stop_event: asyncio.Event):
    # --------------------------------------------------
    # ENV + CONFIG
    # --------------------------------------------------
    load_dotenv()
    config = load_relay_config()
    player_id = config.upstream.player_id
    label = f"relay {player_id}"

    log.info(f"{version.as_string()} booting")
    log.info(
        f"[{label}] MJ={config.upstream.base_url} "
        f"chat_capacity={config.history.chat_capacity}"
    )

    # --------------------------------------------------
    # RELAY STATE (single owned instance)
    # --------------------------------------------------
    relay = RelayCore(chat_capacity=config.history.chat_capacity, label=label)

    # --------------------------------------------------
    # UPSTREAM
    # --------------------------------------------------
    subscriber = UpstreamSubscriber(
        relay,
        MJEventSSEClient(
            config.upstream.base_url,
            retry_seconds=config.upstream.retry_seconds,
            connect_timeout=config.upstream.connect_timeout,
            label=label,
        ),
        label=label,
    )
    actions = MJActionClient(
        config.upstream.base_url,
        player_id,
        timeout=config.upstream.action_timeout,
    )

    # --------------------------------------------------
    # DOWNSTREAM API
    # --------------------------------------------------
    api = RelayApiServer(config.api, relay, actions, upstream_stats=subscriber.stats)
    api.start()

    upstream_task = asyncio.create_task(subscriber.run(), name="mj-subscriber")

    # --------------------------------------------------
    # BLOCK UNTIL SHUTDOWN SIGNAL
    # --------------------------------------------------
    await stop_event.wait()

    log.info("Shutdown initiated")

    # --------------------------------------------------
    # ORDERLY SHUTDOWN (DOWNSTREAM FIRST)
    # --------------------------------------------------
    try:
        api.stop()
    except Exception as e:
        log.warning(f"API shutdown error ignored: {e}")

    upstream_task.cancel()
    await asyncio.gather(upstream_task, return_exceptions=True)

    try:
        await subscriber.aclose()
        actions.close()
    except Exception as e:
        log.warning(f"Client shutdown error ignored: {e}")

    log.info(f"[{label}] stopped")


# ----------------------------------------------------------------------
# SIGNAL HANDLING (WINDOWS-SAFE)
# ----------------------------------------------------------------------

def _install_signal_handlers(
    loop: asyncio.AbstractEventLoop,
    stop_event: asyncio.Event,
):
    """
    Windows-safe Ctrl+C handler.
    Uses signal.signal + asyncio.Event to unwind cleanly.
    """

    def _handler(signum, frame):
        loop.call_soon_threadsafe(stop_event.set)

    try:
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)
    except (ValueError, OSError) as e:
        log.warning(f"Signal handlers not installed: {e}")


# ----------------------------------------------------------------------
# ENTRYPOINT
# ----------------------------------------------------------------------

def run():
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    stop_event = asyncio.Event()
    _install_signal_handlers(loop, stop_event)

    try:
        loop.run_until_complete(main(stop_event))

    except KeyboardInterrupt:
        log.info("KeyboardInterrupt received, shutdown initiated")

    finally:
        # --------------------------------------------------
        # CANCEL REMAINING TASKS (CLEANLY)
        # --------------------------------------------------
        pending = [t for t in asyncio.all_tasks(loop) if not t.done()]
        for task in pending:
            task.cancel()

        if pending:
            loop.run_until_complete(
                asyncio.gather(*pending, return_exceptions=True)
            )

        loop.run_until_complete(loop.shutdown_asyncgens())

        asyncio.set_event_loop(None)
        loop.close()


if __name__ == "__main__":
    run()
    sys.exit(0)
