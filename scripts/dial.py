"""
Command-line peer for a running relay.

Examples:
    python scripts/dial.py --email bob@example.com --answer
    python scripts/dial.py --email alice@example.com --call bob@example.com --duration 30

Tokens are minted locally with the relay's JWT secret, so this only works
against a relay sharing the same settings (development setups).
"""
import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from peercall.config.redis import close_redis
from peercall.config.settings import settings
from peercall.schemas.signal import Identity
from peercall.services.auth_service import create_access_token
from peercall.services.call import CallServiceError
from peercall.services.client import CallClient

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)


def parse_args():
    parser = argparse.ArgumentParser(description="Place or answer a peercall call from the terminal")
    parser.add_argument("--email", required=True, help="identity to log in as")
    parser.add_argument("--name", help="display name (defaults to the e-mail local part)")
    parser.add_argument("--base-url", default=os.getenv("BASE_URL", settings.API_BASE_URL))
    parser.add_argument("--call", metavar="TARGET", help="identity to call once it is online")
    parser.add_argument("--answer", action="store_true", help="accept the first incoming call")
    parser.add_argument("--resume", action="store_true", help="resume a call saved by a previous run")
    parser.add_argument("--duration", type=float, default=60.0, help="seconds to stay in the call")
    parser.add_argument("--wait", type=float, default=30.0, help="seconds to wait for the target to come online")
    return parser.parse_args()


async def wait_for_peer(client: CallClient, target: str, timeout: float) -> bool:
    deadline = asyncio.get_running_loop().time() + timeout
    while asyncio.get_running_loop().time() < deadline:
        if any(u.email == target for u in client.peers):
            return True
        await asyncio.sleep(0.5)
    return False


async def main():
    args = parse_args()
    token = create_access_token(args.email, username=args.name)
    answered = asyncio.Event()

    client = CallClient(
        Identity(email=args.email, token=token),
        base_url=args.base_url,
        on_notice=lambda text: logger.info(f"📣 {text}"),
        on_users=lambda peers: logger.info(f"👥 Online: {', '.join(u.email for u in peers) or 'nobody'}"),
        on_chat_message=lambda m: logger.info(f"💬 {m.sender}: {m.text}"),
    )

    def on_incoming(offer):
        logger.info(f"📞 Incoming call from {offer.sender}")
        if args.answer:
            answered.set()

    client.on_incoming_call = on_incoming

    await client.connect()
    try:
        if args.resume:
            await client.resume_call()
        elif args.call:
            if not await wait_for_peer(client, args.call, args.wait):
                logger.error(f"{args.call} did not come online within {args.wait}s")
                return 1
            await client.place_call(args.call)
        elif args.answer:
            await answered.wait()
            await client.accept_incoming()
        else:
            logger.info("Nothing to do; pass --call, --answer or --resume")
            return 0

        await asyncio.sleep(args.duration)
        await client.hangup()
    except CallServiceError as e:
        logger.error(f"Call failed: {e}")
        return 1
    finally:
        await client.logout()
        await client.aclose()
        await close_redis()
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
